"""Turn a source descriptor into a verified, extracted bundle on local disk."""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from paircli.app.archive import ArchiveExtractor
from paircli.app.cache import CacheStore
from paircli.app.integrity import companion_checksum_path, parse_checksum, verify
from paircli.domain.errors import OfflineError, SourceResolutionError
from paircli.domain.manifest import MANIFEST_FILENAME, Manifest, load_manifest
from paircli.domain.source import (
    LocalArchive,
    LocalDirectory,
    RemoteGit,
    RemoteRelease,
    SourceDescriptor,
    checksum_url,
    remote_cache_key,
)
from paircli.ports.fetch import Downloader, GitClient


@dataclass
class Bundle:
    root: Path
    manifest: Manifest
    descriptor: SourceDescriptor
    cache_hit: bool = False
    scratch: Path | None = None

    def cleanup(self) -> None:
        if self.scratch is not None and self.scratch.exists():
            shutil.rmtree(self.scratch, ignore_errors=True)
        self.scratch = None

    def to_dict(self) -> dict[str, object]:
        return {
            "root": str(self.root),
            "source": self.descriptor.describe(),
            "name": self.manifest.name,
            "version": self.manifest.version,
            "cache_hit": self.cache_hit,
        }


class SourceResolver:
    def __init__(
        self,
        cache: CacheStore,
        downloader: Downloader,
        git: GitClient,
        *,
        extractor: ArchiveExtractor | None = None,
        offline: bool = False,
    ) -> None:
        self._cache = cache
        self._downloader = downloader
        self._git = git
        self._extractor = extractor or ArchiveExtractor()
        self._offline = offline

    def resolve(self, descriptor: SourceDescriptor) -> Bundle:
        if isinstance(descriptor, LocalDirectory):
            return self._resolve_directory(descriptor)
        if isinstance(descriptor, LocalArchive):
            return self._resolve_archive(descriptor)
        if isinstance(descriptor, RemoteRelease):
            return self._resolve_release(descriptor)
        if isinstance(descriptor, RemoteGit):
            return self._resolve_git(descriptor)
        raise TypeError(f"Unsupported source descriptor: {descriptor!r}")

    def _resolve_directory(self, descriptor: LocalDirectory) -> Bundle:
        root = descriptor.path
        if not root.is_dir():
            raise SourceResolutionError(f"Source directory not found: {root}")
        return Bundle(root=root, manifest=load_manifest(root), descriptor=descriptor)

    def _resolve_archive(self, descriptor: LocalArchive) -> Bundle:
        archive = descriptor.path
        if not archive.is_file():
            raise SourceResolutionError(f"Source archive not found: {archive}")
        sidecar = companion_checksum_path(archive)
        if sidecar.is_file():
            verify(archive, sidecar)
        scratch = Path(tempfile.mkdtemp(prefix="pair-kb-"))
        try:
            root = self._extractor.extract(archive, scratch / "bundle")
            manifest = load_manifest(root)
        except BaseException:
            shutil.rmtree(scratch, ignore_errors=True)
            raise
        return Bundle(root=root, manifest=manifest, descriptor=descriptor, scratch=scratch)

    def _resolve_release(self, descriptor: RemoteRelease) -> Bundle:
        key = remote_cache_key(descriptor)
        expected_version = None if descriptor.url else descriptor.version
        cached = self._cache.get(key)
        if cached is not None:
            return Bundle(
                root=cached,
                manifest=load_manifest(cached, expected_version=expected_version),
                descriptor=descriptor,
                cache_hit=True,
            )
        if self._offline:
            raise OfflineError(descriptor.describe())

        def _populate(target: Path) -> None:
            url = descriptor.download_url
            with tempfile.TemporaryDirectory(prefix="pair-download-") as tmp_dir:
                archive = Path(tmp_dir) / (url.rsplit("/", 1)[-1] or "bundle.zip")
                checksum_text = self._downloader.fetch_text(checksum_url(url))
                if checksum_text is None:
                    raise SourceResolutionError(
                        f"Checksum file not found for {url}",
                        hint=f"publish {checksum_url(url)} next to the archive",
                    )
                self._downloader.download(url, archive)
                verify(archive, parse_checksum(checksum_text))
                self._extractor.extract(archive, target)
            load_manifest(target, expected_version=expected_version)

        root = self._cache.put(key, _populate)
        return Bundle(root=root, manifest=load_manifest(root), descriptor=descriptor)

    def _resolve_git(self, descriptor: RemoteGit) -> Bundle:
        if not descriptor.ref:
            if self._offline:
                raise OfflineError(descriptor.describe())
            descriptor = descriptor.with_ref(self._git.default_branch(descriptor.url))
        key = remote_cache_key(descriptor)
        cached = self._cache.get(key)
        if cached is not None:
            return Bundle(root=cached, manifest=load_manifest(cached), descriptor=descriptor, cache_hit=True)
        if self._offline:
            raise OfflineError(descriptor.describe())

        def _populate(target: Path) -> None:
            self._git.clone(descriptor.url, descriptor.ref or "", target)
            git_dir = target / ".git"
            if git_dir.is_dir():
                shutil.rmtree(git_dir)
            elif git_dir.exists():
                git_dir.unlink()
            if not (target / MANIFEST_FILENAME).is_file():
                raise SourceResolutionError(
                    f"Repository {descriptor.url}#{descriptor.ref} has no {MANIFEST_FILENAME} at its root"
                )
            load_manifest(target)

        root = self._cache.put(key, _populate)
        return Bundle(root=root, manifest=load_manifest(root), descriptor=descriptor)


__all__ = ["Bundle", "SourceResolver"]
