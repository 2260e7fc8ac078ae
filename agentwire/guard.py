"""Start-up checks: schema guard, channel capacities and projection limits."""

from __future__ import annotations

import dataclasses
import os
from datetime import timedelta
from pathlib import Path
from typing import Iterator, Union

from agentwire.errors import InternalError, InvalidConfigError
from agentwire.schema import (
    ManifestFile,
    ManifestMismatch,
    MetadataValidationError,
    validate_metadata_fields,
    validate_schema_manifest,
)
from agentwire.state import StateProjectionLimits

PathLike = Union[str, "os.PathLike[str]"]


def validate_schema_guard(active_schema_dir: PathLike) -> None:
    """Check ``metadata.json`` and ``manifest.sha256`` against the ``json-schema`` tree."""
    active = Path(active_schema_dir)
    metadata_path = active / "metadata.json"
    manifest_path = active / "manifest.sha256"
    schema_dir = active / "json-schema"

    try:
        metadata_contents = metadata_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise InternalError(
            f"failed to read metadata.json at {str(metadata_path)!r}: {err}"
        ) from err
    try:
        validate_metadata_fields(metadata_contents)
    except MetadataValidationError as err:
        raise InternalError(
            f"invalid schema metadata at {str(metadata_path)!r}: {err}"
        ) from err

    try:
        manifest_contents = manifest_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise InternalError(
            f"failed to read manifest.sha256 at {str(manifest_path)!r}: {err}"
        ) from err

    files = load_schema_files(schema_dir)
    try:
        validate_schema_manifest(manifest_contents, files)
    except ManifestMismatch as err:
        raise InternalError(
            f"schema manifest validation failed at {str(manifest_path)!r}: {err}"
        ) from err


def validate_runtime_capacities(
    live_channel_capacity: int,
    server_request_channel_capacity: int,
    has_event_sink: bool,
    event_sink_channel_capacity: int,
    rpc_response_timeout: Union[timedelta, float],
) -> None:
    """Reject zero capacities and a zero response timeout (seconds or timedelta)."""
    if live_channel_capacity == 0:
        raise InvalidConfigError("live_channel_capacity must be > 0")
    if server_request_channel_capacity == 0:
        raise InvalidConfigError("server_request_channel_capacity must be > 0")
    if has_event_sink and event_sink_channel_capacity == 0:
        raise InvalidConfigError(
            "event_sink_channel_capacity must be > 0 when event_sink is configured"
        )
    seconds = (
        rpc_response_timeout.total_seconds()
        if isinstance(rpc_response_timeout, timedelta)
        else float(rpc_response_timeout)
    )
    if seconds == 0:
        raise InvalidConfigError("rpc_response_timeout must be > 0")


def validate_state_projection_limits(limits: StateProjectionLimits) -> None:
    """Reject any projection limit that is zero."""
    for limit in dataclasses.fields(limits):
        if getattr(limits, limit.name) == 0:
            raise InvalidConfigError(f"state_projection_limits.{limit.name} must be > 0")


def load_schema_files(schema_dir: PathLike) -> list[ManifestFile]:
    """Read every regular file below ``schema_dir``, in sorted directory order."""
    root = Path(schema_dir)
    if not root.exists():
        raise InternalError(f"schema directory not found: {str(root)!r}")
    return list(_collect_schema_files(root, root))


def _collect_schema_files(root: Path, current: Path) -> Iterator[ManifestFile]:
    try:
        entries = sorted(current.iterdir())
    except OSError as err:
        raise InternalError(f"failed to read schema dir {str(current)!r}: {err}") from err

    for path in entries:
        if path.is_dir():
            yield from _collect_schema_files(root, path)
            continue
        if not path.is_file():
            continue
        relative = path.relative_to(root).as_posix().replace("\\", "/")
        try:
            content = path.read_bytes()
        except OSError as err:
            raise InternalError(f"failed to read schema file {str(path)!r}: {err}") from err
        yield ManifestFile(relative_path=f"./{relative}", content=content)