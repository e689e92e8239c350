"""Integrity reports for packaged bundles (``kb-verify`` and ``kb-info``)."""

from __future__ import annotations

import json
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from paircli.app.integrity import check, companion_checksum_path, content_checksum
from paircli.domain.errors import KnowledgeBaseError, ManifestInvalidError
from paircli.domain.manifest import MANIFEST_FILENAME, Manifest, manifest_errors

PASS = "PASS"
FAIL = "FAIL"
SKIP = "SKIP"
_RULE = "=" * 60


@dataclass
class CheckResult:
    status: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, **self.details}


@dataclass
class VerificationReport:
    package: str
    timestamp: str
    checks: Dict[str, CheckResult]

    @property
    def overall(self) -> str:
        return FAIL if any(result.status == FAIL for result in self.checks.values()) else PASS

    @property
    def passed(self) -> bool:
        return self.overall == PASS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package": self.package,
            "timestamp": self.timestamp,
            "checks": {name: result.to_dict() for name, result in self.checks.items()},
            "overall": self.overall,
        }

    def render(self) -> str:
        lines = ["Package Verification Report", _RULE, f"Package:   {self.package}", f"Timestamp: {self.timestamp}", ""]
        checksum = self.checks["checksum"]
        lines.append(f"Checksum (SHA-256): {checksum.status}")
        if checksum.status == FAIL:
            lines.append(f"  Expected: {checksum.details.get('expected') or '-'}")
            lines.append(f"  Actual:   {checksum.details.get('actual')}")
        archive = self.checks["archive"]
        lines.append(f"Archive checksum file: {archive.status}")
        if archive.status == FAIL:
            lines.append(f"  Expected: {archive.details.get('expected')}")
            lines.append(f"  Actual:   {archive.details.get('actual')}")
        structure = self.checks["structure"]
        lines.append(f"Structure: {structure.status}")
        if structure.status == FAIL:
            lines.append(f"  Missing paths: {', '.join(structure.details.get('missingPaths', []))}")
        manifest = self.checks["manifest"]
        lines.append(f"Manifest: {manifest.status}")
        for error in manifest.details.get("errors", []):
            lines.append(f"  - {error}")
        lines.extend(["", _RULE, f"Overall Result: {self.overall}"])
        return "\n".join(lines)


def read_bundle_manifest(package: Path) -> Any:
    if not package.is_file():
        raise KnowledgeBaseError(f"File not found: {package}")
    try:
        with zipfile.ZipFile(package) as archive:
            try:
                raw = archive.read(MANIFEST_FILENAME)
            except KeyError as exc:
                raise ManifestInvalidError(f"Missing {MANIFEST_FILENAME} in package") from exc
    except zipfile.BadZipFile as exc:
        raise KnowledgeBaseError(f"Invalid ZIP archive: {package}") from exc
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestInvalidError(f"Invalid JSON in {MANIFEST_FILENAME}") from exc


def _structure_check(package: Path, payload: Any) -> CheckResult:
    registries = payload.get("registries", []) if isinstance(payload, dict) else []
    if not isinstance(registries, list):
        return CheckResult(FAIL, {"missingPaths": []})
    with zipfile.ZipFile(package) as archive:
        names = [name.rstrip("/") for name in archive.namelist()]
    missing = []
    for item in registries:
        path = str(item).strip("/")
        if path in {"", "."}:
            continue
        if not any(name == path or name.startswith(path + "/") for name in names):
            missing.append(str(item))
    return CheckResult(FAIL if missing else PASS, {"missingPaths": missing})


def _checksum_check(package: Path, payload: Any) -> CheckResult:
    expected = payload.get("contentChecksum") if isinstance(payload, dict) else None
    actual = content_checksum(package)
    if not expected:
        return CheckResult(FAIL, {"algorithm": "SHA-256", "expected": None, "actual": actual, "reason": "missing contentChecksum"})
    status = PASS if str(expected).lower() == actual else FAIL
    return CheckResult(status, {"algorithm": "SHA-256", "expected": expected, "actual": actual})


def _archive_check(package: Path) -> CheckResult:
    sidecar = companion_checksum_path(package)
    if not sidecar.is_file():
        return CheckResult(SKIP, {"file": None})
    result = check(package, sidecar)
    status = PASS if result.status == "ok" else FAIL
    return CheckResult(status, {"file": str(sidecar), "expected": result.expected, "actual": result.actual})


def verify_package(package: Path) -> VerificationReport:
    payload = read_bundle_manifest(package)
    errors = manifest_errors(payload)
    checks = {
        "checksum": _checksum_check(package, payload),
        "archive": _archive_check(package),
        "structure": _structure_check(package, payload),
        "manifest": CheckResult(FAIL if errors else PASS, {"errors": errors}),
    }
    timestamp = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
    return VerificationReport(package=str(package), timestamp=timestamp, checks=checks)


def package_info(package: Path) -> Manifest:
    payload = read_bundle_manifest(package)
    errors = manifest_errors(payload)
    if errors:
        raise ManifestInvalidError(f"Invalid manifest: {', '.join(errors)}", errors)
    return Manifest.from_dict(payload)


def render_info(manifest: Manifest, package: Path) -> str:
    lines = [
        "Package Information",
        _RULE,
        f"Name:        {manifest.name}",
        f"Version:     {manifest.version}",
        f"Description: {manifest.description or '-'}",
        f"Author:      {manifest.author or '-'}",
        f"Created:     {manifest.created_at or '-'}",
        f"Registries:  {', '.join(manifest.registries) or '-'}",
        f"Checksum:    {manifest.content_checksum or '-'}",
        f"Size:        {package.stat().st_size} bytes",
    ]
    return "\n".join(lines)


__all__ = [
    "CheckResult",
    "VerificationReport",
    "package_info",
    "read_bundle_manifest",
    "render_info",
    "verify_package",
]
