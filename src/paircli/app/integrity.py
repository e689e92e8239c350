"""SHA-256 helpers for bundle archives, trees and sidecar checksum files."""

from __future__ import annotations

import re
import zipfile
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path

from paircli.domain.errors import ChecksumMismatchError, ExtractionError
from paircli.domain.manifest import MANIFEST_FILENAME

CHECKSUM_SUFFIX = ".sha256"
_CHUNK = 1024 * 1024
_DIGEST_RE = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class ChecksumResult:
    path: Path
    expected: str | None
    actual: str

    @property
    def status(self) -> str:
        if self.expected is None:
            return "missing"
        return "ok" if self.expected.lower() == self.actual.lower() else "mismatch"

    def to_dict(self) -> dict[str, str | None]:
        return {
            "path": str(self.path),
            "expected": self.expected,
            "actual": self.actual,
            "status": self.status,
        }


def sha256_file(path: Path) -> str:
    digest = sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def parse_checksum(text: str) -> str:
    """Extract the digest from ``<hex>`` or ``<hex>  <filename>`` content."""

    stripped = text.strip()
    first = stripped.split()[0] if stripped else ""
    if _DIGEST_RE.match(first):
        return first.lower()
    return stripped


def companion_checksum_path(archive: Path) -> Path:
    return archive.with_name(archive.name + CHECKSUM_SUFFIX)


def format_checksum_line(digest: str, filename: str) -> str:
    return f"{digest}  {filename}\n"


def check(path: Path, expected: str | Path | None) -> ChecksumResult:
    if isinstance(expected, Path):
        expected = parse_checksum(expected.read_text(encoding="utf-8"))
    elif expected is not None:
        expected = parse_checksum(expected)
    return ChecksumResult(path=path, expected=expected, actual=sha256_file(path))


def verify(path: Path, expected: str | Path) -> str:
    """Raise ``ChecksumMismatchError`` unless ``path`` hashes to ``expected``."""

    result = check(path, expected)
    if result.status != "ok":
        raise ChecksumMismatchError(path, result.expected or "", result.actual)
    return result.actual


def tree_digest(root: Path) -> str:
    """Digest of a file or directory tree (relative paths plus bytes, sorted)."""

    digest = sha256()
    if root.is_file():
        digest.update(root.read_bytes())
        return digest.hexdigest()
    for candidate in sorted(root.rglob("*")):
        if not candidate.is_file():
            continue
        digest.update(candidate.relative_to(root).as_posix().encode("utf-8"))
        digest.update(candidate.read_bytes())
    return digest.hexdigest()


def content_checksum(source: Path) -> str:
    """Digest of every file's bytes (manifest excluded) in a directory or zip, path-sorted."""

    digest = sha256()
    if source.is_dir():
        for candidate in sorted(source.rglob("*"), key=lambda item: item.relative_to(source).as_posix()):
            relative = candidate.relative_to(source).as_posix()
            if not candidate.is_file() or relative == MANIFEST_FILENAME:
                continue
            digest.update(candidate.read_bytes())
        return digest.hexdigest()
    try:
        with zipfile.ZipFile(source) as archive:
            names = sorted(
                info.filename
                for info in archive.infolist()
                if not info.is_dir() and info.filename != MANIFEST_FILENAME
            )
            for name in names:
                digest.update(archive.read(name))
    except zipfile.BadZipFile as exc:
        raise ExtractionError(f"Not a valid zip archive: {source}") from exc
    return digest.hexdigest()


__all__ = [
    "CHECKSUM_SUFFIX",
    "ChecksumResult",
    "check",
    "companion_checksum_path",
    "content_checksum",
    "format_checksum_line",
    "parse_checksum",
    "sha256_file",
    "tree_digest",
    "verify",
]
