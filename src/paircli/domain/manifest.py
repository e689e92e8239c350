"""Bundle manifest model and validation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping

from jsonschema import Draft202012Validator
from packaging.version import InvalidVersion, Version

from paircli.domain.errors import ManifestInvalidError
from paircli.domain.source import normalize_version
from paircli.resources import load_json_resource

MANIFEST_FILENAME = "manifest.json"
_KNOWN_FIELDS = {"name", "version", "description", "author", "created_at", "registries", "contentChecksum"}


@dataclass(frozen=True)
class Manifest:
    name: str
    version: str
    registries: List[str] = field(default_factory=list)
    description: str = ""
    author: str = ""
    created_at: str | None = None
    content_checksum: str | None = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Manifest":
        return cls(
            name=str(payload["name"]),
            version=str(payload["version"]),
            registries=[str(item) for item in payload.get("registries", [])],
            description=str(payload.get("description", "")),
            author=str(payload.get("author", "")),
            created_at=payload.get("created_at"),
            content_checksum=payload.get("contentChecksum"),
            extra={key: value for key, value in payload.items() if key not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "registries": list(self.registries),
        }
        if self.created_at:
            payload["created_at"] = self.created_at
        if self.content_checksum:
            payload["contentChecksum"] = self.content_checksum
        payload.update(self.extra)
        return payload

    @classmethod
    def create(
        cls,
        *,
        name: str,
        version: str,
        registries: List[str],
        description: str = "",
        author: str = "",
        content_checksum: str | None = None,
    ) -> "Manifest":
        created = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
        return cls(
            name=name,
            version=version,
            registries=registries,
            description=description,
            author=author,
            created_at=created,
            content_checksum=content_checksum,
        )


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    return Draft202012Validator(load_json_resource("manifest.schema.json"))


def manifest_errors(payload: Any) -> list[str]:
    """Return human-readable problems with a manifest payload; empty when valid."""

    if not isinstance(payload, dict):
        return ["Manifest is not a valid object"]
    errors: list[str] = []
    for error in _validator().iter_errors(payload):
        location = ".".join(str(item) for item in error.absolute_path) or "<root>"
        errors.append(f"{location}: {error.message}")
    version = payload.get("version")
    if isinstance(version, str) and version:
        try:
            Version(normalize_version(version))
        except InvalidVersion:
            errors.append(f"version: {version!r} is not a valid version")
    return errors


def parse_manifest(payload: Any, *, expected_version: str | None = None) -> Manifest:
    errors = manifest_errors(payload)
    if errors:
        raise ManifestInvalidError("Invalid bundle manifest", errors)
    manifest = Manifest.from_dict(payload)
    if expected_version is not None:
        wanted = normalize_version(expected_version)
        actual = normalize_version(manifest.version)
        if Version(actual) != Version(wanted):
            raise ManifestInvalidError(
                f"Bundle version {manifest.version} does not match requested version {expected_version}"
            )
    return manifest


def read_manifest_payload(bundle_root: Path) -> Any:
    path = bundle_root / MANIFEST_FILENAME
    if not path.is_file():
        raise ManifestInvalidError(f"Bundle is missing {MANIFEST_FILENAME}: {bundle_root}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestInvalidError(f"{MANIFEST_FILENAME} is not valid JSON: {exc}") from exc


def load_manifest(bundle_root: Path, *, expected_version: str | None = None) -> Manifest:
    return parse_manifest(read_manifest_payload(bundle_root), expected_version=expected_version)


def write_manifest(manifest: Manifest, bundle_root: Path) -> Path:
    path = bundle_root / MANIFEST_FILENAME
    path.write_text(json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


__all__ = [
    "MANIFEST_FILENAME",
    "Manifest",
    "load_manifest",
    "manifest_errors",
    "parse_manifest",
    "read_manifest_payload",
    "write_manifest",
]
