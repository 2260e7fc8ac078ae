import hashlib

import pytest

from agentwire.schema import (
    ManifestFile,
    ManifestMismatch,
    MetadataFields,
    MetadataValidationError,
    validate_metadata_fields,
    validate_schema_manifest,
)

FULL_METADATA = """{
  "schemaName":"app-server",
  "generatedAtUtc":"2026-01-01T00:00:00Z",
  "generatorCommand":"codex app-server generate-json-schema --out <DIR>",
  "sourceOfTruth":"active/json-schema"
}"""


def test_validate_metadata_ok():
    fields = validate_metadata_fields(FULL_METADATA)
    assert fields.schema_name == "app-server"
    assert fields.source_of_truth == "active/json-schema"
    assert fields == MetadataFields(
        schema_name="app-server",
        generated_at_utc="2026-01-01T00:00:00Z",
        generator_command="codex app-server generate-json-schema --out <DIR>",
        source_of_truth="active/json-schema",
    )


def test_validate_metadata_missing_field():
    with pytest.raises(MetadataValidationError) as info:
        validate_metadata_fields('{"schemaName":"app-server"}')
    assert info.value.kind == MetadataValidationError.MISSING_FIELD
    assert info.value.field == "generatedAtUtc"
    assert str(info.value) == "metadata field is missing: generatedAtUtc"


def test_validate_metadata_empty_field():
    metadata = """{
  "schemaName":"app-server",
  "generatedAtUtc":" ",
  "generatorCommand":"x",
  "sourceOfTruth":"y"
}"""
    with pytest.raises(MetadataValidationError) as info:
        validate_metadata_fields(metadata)
    assert info.value.kind == MetadataValidationError.EMPTY_FIELD
    assert info.value.field == "generatedAtUtc"
    assert str(info.value) == "metadata field is empty: generatedAtUtc"


def test_validate_metadata_invalid_json():
    with pytest.raises(MetadataValidationError) as info:
        validate_metadata_fields("{not json")
    assert info.value.kind == MetadataValidationError.INVALID_JSON
    assert info.value.field is None
    assert str(info.value).startswith("metadata is not valid json: ")


def test_validate_metadata_non_string_counts_as_missing():
    with pytest.raises(MetadataValidationError) as info:
        validate_metadata_fields('{"schemaName": 5}')
    assert info.value.kind == MetadataValidationError.MISSING_FIELD
    assert info.value.field == "schemaName"


def test_validate_metadata_non_object_counts_as_missing():
    with pytest.raises(MetadataValidationError) as info:
        validate_metadata_fields("[]")
    assert info.value.field == "schemaName"


def test_validate_manifest_ok():
    files = [ManifestFile("./schema.json", b'{"type":"object"}')]
    digest = hashlib.sha256(b'{"type":"object"}').hexdigest()
    assert validate_schema_manifest(f"{digest}  ./schema.json", files) is None


def test_validate_manifest_err():
    files = [ManifestFile("./schema.json", b"{}")]
    with pytest.raises(ManifestMismatch) as info:
        validate_schema_manifest("deadbeef  ./schema.json", files)
    assert str(info.value) == "manifest mismatch"


def test_validate_manifest_sorts_paths_and_normalizes_crlf():
    files = [ManifestFile("./b.json", b"b"), ManifestFile("./a.json", b"a")]
    digest_a = hashlib.sha256(b"a").hexdigest()
    digest_b = hashlib.sha256(b"b").hexdigest()
    manifest = f"\n{digest_a}  ./a.json\r\n{digest_b}  ./b.json\r\n\n"
    assert validate_schema_manifest(manifest, files) is None


def test_validate_manifest_rejects_wrong_order():
    files = [ManifestFile("./b.json", b"b"), ManifestFile("./a.json", b"a")]
    digest_a = hashlib.sha256(b"a").hexdigest()
    digest_b = hashlib.sha256(b"b").hexdigest()
    with pytest.raises(ManifestMismatch):
        validate_schema_manifest(f"{digest_b}  ./b.json\n{digest_a}  ./a.json", files)


def test_validate_manifest_rejects_missing_file_entry():
    files = [ManifestFile("./a.json", b"a")]
    with pytest.raises(ManifestMismatch):
        validate_schema_manifest("", files)