import dataclasses
import hashlib
from datetime import timedelta

import pytest

from agentwire.errors import InternalError, InvalidConfigError
from agentwire.guard import (
    load_schema_files,
    validate_runtime_capacities,
    validate_schema_guard,
    validate_state_projection_limits,
)
from agentwire.state import StateProjectionLimits

GOOD_METADATA = """{
  "schemaName":"app-server",
  "generatedAtUtc":"2026-01-01T00:00:00Z",
  "generatorCommand":"codex app-server generate-json-schema --out <DIR>",
  "sourceOfTruth":"active/json-schema"
}"""


def _build_manifest(files):
    entries = sorted(
        (path.replace("\\", "/"), hashlib.sha256(content).hexdigest())
        for path, content in files
    )
    return "\n".join(f"{digest}  ./{path}" for path, digest in entries)


def _make_fixture(root, metadata, files, manifest_override=None):
    active = root / "active"
    schema_dir = active / "json-schema"
    schema_dir.mkdir(parents=True)
    for rel_path, content in files:
        full = schema_dir / rel_path
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(content)
    manifest = manifest_override if manifest_override is not None else _build_manifest(files)
    (active / "manifest.sha256").write_text(manifest)
    (active / "metadata.json").write_text(metadata)
    return active


def test_spawn_fails_when_metadata_missing_required_field(tmp_path):
    metadata = """{
  "schemaName":"app-server",
  "generatorCommand":"codex app-server generate-json-schema --out <DIR>",
  "sourceOfTruth":"active/json-schema"
}"""
    active = _make_fixture(tmp_path, metadata, [], manifest_override="")
    with pytest.raises(InternalError) as info:
        validate_schema_guard(active)
    assert "metadata" in str(info.value)


def test_spawn_fails_when_manifest_mismatches_schema_files(tmp_path):
    active = _make_fixture(
        tmp_path,
        GOOD_METADATA,
        [("root.json", b'{"type":"object"}')],
        manifest_override="deadbeef  ./root.json",
    )
    with pytest.raises(InternalError) as info:
        validate_schema_guard(active)
    assert "manifest" in str(info.value)


def test_schema_guard_accepts_consistent_fixture(tmp_path):
    files = [("root.json", b'{"type":"object"}'), ("nested/child.json", b"{}")]
    active = _make_fixture(tmp_path, GOOD_METADATA, files)
    assert validate_schema_guard(active) is None


def test_schema_guard_reports_missing_metadata_file(tmp_path):
    with pytest.raises(InternalError) as info:
        validate_schema_guard(tmp_path)
    assert "failed to read metadata.json" in str(info.value)


def test_schema_guard_reports_missing_schema_dir(tmp_path):
    (tmp_path / "metadata.json").write_text(GOOD_METADATA)
    (tmp_path / "manifest.sha256").write_text("")
    with pytest.raises(InternalError) as info:
        validate_schema_guard(tmp_path)
    assert "schema directory not found" in str(info.value)


def test_load_schema_files_walks_sorted_and_prefixes(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "x.json").write_bytes(b"x")
    (tmp_path / "c.json").write_bytes(b"c")
    (tmp_path / "b.json").write_bytes(b"b")
    files = load_schema_files(tmp_path)
    assert [f.relative_path for f in files] == ["./a/x.json", "./b.json", "./c.json"]
    assert [f.content for f in files] == [b"x", b"b", b"c"]


def test_load_schema_files_missing_dir(tmp_path):
    with pytest.raises(InternalError, match="schema directory not found"):
        load_schema_files(tmp_path / "absent")


@pytest.mark.parametrize(
    "args, message",
    [
        ((0, 1, False, 0, 1.0), "live_channel_capacity must be > 0"),
        ((1, 0, False, 0, 1.0), "server_request_channel_capacity must be > 0"),
        ((1, 1, True, 0, 1.0), "event_sink_channel_capacity must be > 0"),
        ((1, 1, False, 0, 0), "rpc_response_timeout must be > 0"),
        ((1, 1, False, 0, timedelta(0)), "rpc_response_timeout must be > 0"),
    ],
)
def test_runtime_capacities_rejections(args, message):
    with pytest.raises(InvalidConfigError) as info:
        validate_runtime_capacities(*args)
    assert message in str(info.value)


@pytest.mark.parametrize(
    "name", [f.name for f in dataclasses.fields(StateProjectionLimits)]
)
def test_state_projection_limits_rejects_zero(name):
    limits = dataclasses.replace(StateProjectionLimits(), **{name: 0})
    with pytest.raises(InvalidConfigError) as info:
        validate_state_projection_limits(limits)
    assert str(info.value) == f"state_projection_limits.{name} must be > 0"