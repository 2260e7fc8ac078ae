"""Validation of schema metadata and of the SHA-256 manifest of schema files."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Iterable, Optional

_REQUIRED_FIELDS = (
    ("schemaName", "schema_name"),
    ("generatedAtUtc", "generated_at_utc"),
    ("generatorCommand", "generator_command"),
    ("sourceOfTruth", "source_of_truth"),
)


@dataclass(frozen=True)
class ManifestFile:
    """One schema file: its ``./``-prefixed relative path and its raw content."""

    relative_path: str
    content: bytes


@dataclass(frozen=True)
class MetadataFields:
    """The required fields of a schema ``metadata.json``."""

    schema_name: str
    generated_at_utc: str
    generator_command: str
    source_of_truth: str


class ManifestMismatch(ValueError):
    """The manifest text does not describe the given files."""

    def __init__(self) -> None:
        super().__init__("manifest mismatch")


class MetadataValidationError(ValueError):
    """Schema metadata is unreadable or lacks a required field."""

    INVALID_JSON = "invalid_json"
    MISSING_FIELD = "missing_field"
    EMPTY_FIELD = "empty_field"

    _PREFIXES = {
        INVALID_JSON: "metadata is not valid json",
        MISSING_FIELD: "metadata field is missing",
        EMPTY_FIELD: "metadata field is empty",
    }

    def __init__(self, kind: str, detail: str) -> None:
        self.kind = kind
        self.detail = detail
        self.field: Optional[str] = None if kind == self.INVALID_JSON else detail
        super().__init__(f"{self._PREFIXES[kind]}: {detail}")


def validate_metadata_fields(metadata_contents: str) -> MetadataFields:
    """Parse metadata JSON and return its required, non-blank string fields."""
    try:
        document = json.loads(metadata_contents)
    except json.JSONDecodeError as err:
        raise MetadataValidationError(MetadataValidationError.INVALID_JSON, str(err)) from err

    values = {attr: _required_non_empty_string(document, key) for key, attr in _REQUIRED_FIELDS}
    return MetadataFields(**values)


def validate_schema_manifest(manifest_contents: str, files: Iterable[ManifestFile]) -> None:
    """Raise :class:`ManifestMismatch` unless the manifest lists exactly these files' digests."""
    hashed = sorted(
        (file.relative_path, hashlib.sha256(file.content).hexdigest()) for file in files
    )
    actual = "\n".join(f"{digest}  {path}" for path, digest in hashed)
    if _normalize_newlines(manifest_contents) != _normalize_newlines(actual):
        raise ManifestMismatch()


def _normalize_newlines(text: str) -> str:
    return text.strip().replace("\r\n", "\n")


def _required_non_empty_string(document: Any, key: str) -> str:
    value = document.get(key) if isinstance(document, dict) else None
    if not isinstance(value, str):
        raise MetadataValidationError(MetadataValidationError.MISSING_FIELD, key)
    if not value.strip():
        raise MetadataValidationError(MetadataValidationError.EMPTY_FIELD, key)
    return value