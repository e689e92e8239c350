"""Source descriptors: where a knowledge-base bundle comes from."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Union

from paircli.domain.errors import SourceResolutionError

RELEASE_URL_TEMPLATE = (
    "https://github.com/foomakers/pair/releases/download/v{version}/knowledge-base-{version}.zip"
)
CHECKSUM_SUFFIX = ".sha256"
_UNSUPPORTED_SCHEMES = ("file://", "ftp://")
_GIT_PREFIX = "git+"


def normalize_version(version: str) -> str:
    version = version.strip()
    if version[:1] in {"v", "V"}:
        return version[1:]
    return version


def release_url(version: str) -> str:
    return RELEASE_URL_TEMPLATE.format(version=normalize_version(version))


def checksum_url(url: str) -> str:
    return url + CHECKSUM_SUFFIX


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


@dataclass(frozen=True)
class LocalDirectory:
    path: Path

    def describe(self) -> str:
        return f"directory {self.path}"


@dataclass(frozen=True)
class LocalArchive:
    path: Path

    def describe(self) -> str:
        return f"archive {self.path}"


@dataclass(frozen=True)
class RemoteRelease:
    version: str
    url: str | None = None

    @property
    def download_url(self) -> str:
        return self.url or release_url(self.version)

    def describe(self) -> str:
        if self.url:
            return f"release {self.url}"
        return f"release v{normalize_version(self.version)}"


@dataclass(frozen=True)
class RemoteGit:
    url: str
    ref: str | None = None

    def with_ref(self, ref: str) -> "RemoteGit":
        return replace(self, ref=ref)

    def describe(self) -> str:
        return f"git {self.url}#{self.ref}" if self.ref else f"git {self.url}"


SourceDescriptor = Union[LocalDirectory, LocalArchive, RemoteRelease, RemoteGit]


def remote_cache_key(descriptor: RemoteRelease | RemoteGit) -> str:
    if isinstance(descriptor, RemoteRelease):
        if descriptor.url:
            return f"url-{_short_hash(descriptor.url)}"
        return normalize_version(descriptor.version)
    if not descriptor.ref:
        raise ValueError("RemoteGit ref must be resolved before computing a cache key")
    return f"git-{_short_hash(f'{descriptor.url}#{descriptor.ref}')}"


def cache_key(descriptor: SourceDescriptor) -> str | None:
    """Return the cache slot name for remote descriptors, ``None`` for local ones."""

    if isinstance(descriptor, (RemoteRelease, RemoteGit)):
        return remote_cache_key(descriptor)
    return None


def _looks_like_git(raw: str) -> bool:
    if raw.startswith(_GIT_PREFIX) or raw.startswith("git@") or raw.startswith("ssh://"):
        return True
    base = raw.split("#", 1)[0].rstrip("/")
    return "://" in base and base.endswith(".git")


def _parse_git(raw: str) -> RemoteGit:
    if raw.startswith(_GIT_PREFIX):
        raw = raw[len(_GIT_PREFIX):]
    url, _, ref = raw.partition("#")
    if not url:
        raise SourceResolutionError(f"Invalid git source: {raw!r}")
    return RemoteGit(url=url, ref=ref or None)


def parse_source(raw: str | None, default_version: str, cwd: Path | None = None) -> SourceDescriptor:
    """Map a ``--source`` argument onto exactly one descriptor variant."""

    if raw is None or not raw.strip():
        return RemoteRelease(version=normalize_version(default_version))
    raw = raw.strip()
    lowered = raw.lower()
    if lowered.startswith(_UNSUPPORTED_SCHEMES):
        raise SourceResolutionError(
            f"Unsupported source protocol: {raw}",
            hint="use an http(s) URL, a git repository, a local .zip or a local directory",
        )
    if _looks_like_git(raw):
        return _parse_git(raw)
    if lowered.startswith(("http://", "https://")):
        return RemoteRelease(version=normalize_version(default_version), url=raw)

    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (cwd or Path.cwd()) / path
    path = path.resolve()
    if path.is_dir():
        return LocalDirectory(path)
    if path.is_file():
        if path.suffix.lower() == ".zip":
            return LocalArchive(path)
        raise SourceResolutionError(f"Unsupported source file (expected a .zip archive): {path}")
    raise SourceResolutionError(f"Source path not found: {path}")


__all__ = [
    "LocalDirectory",
    "LocalArchive",
    "RemoteRelease",
    "RemoteGit",
    "SourceDescriptor",
    "RELEASE_URL_TEMPLATE",
    "cache_key",
    "checksum_url",
    "normalize_version",
    "parse_source",
    "release_url",
    "remote_cache_key",
]
