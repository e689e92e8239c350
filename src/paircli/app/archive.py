"""Bounded, traversal-safe ZIP extraction and deterministic bundle archives."""

from __future__ import annotations

import os
import shutil
import stat
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable
from zipfile import ZIP_DEFLATED, ZipFile

from paircli.domain.errors import ExtractionError
from paircli.domain.manifest import MANIFEST_FILENAME

MAX_ENTRIES = 20_000
MAX_UNCOMPRESSED_BYTES = 1024 * 1024 * 1024  # 1 GiB
MAX_COMPRESSION_RATIO = 200
_RATIO_FLOOR_BYTES = 1024 * 1024
_FIXED_TIMESTAMP = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True)
class ExtractionLimits:
    max_entries: int = MAX_ENTRIES
    max_uncompressed_bytes: int = MAX_UNCOMPRESSED_BYTES
    max_ratio: int = MAX_COMPRESSION_RATIO


def _member_path(name: str) -> PurePosixPath:
    normalized = name.replace("\\", "/")
    if normalized.startswith("/") or (len(normalized) > 1 and normalized[1] == ":"):
        raise ExtractionError(f"Archive contains an absolute path entry: {name!r}")
    path = PurePosixPath(normalized)
    if ".." in path.parts:
        raise ExtractionError(f"Archive contains a path traversal entry: {name!r}")
    return path


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(info.external_attr >> 16)


class ArchiveExtractor:
    def __init__(self, limits: ExtractionLimits | None = None) -> None:
        self._limits = limits or ExtractionLimits()

    def extract(self, archive: Path, dest: Path) -> Path:
        """Unpack ``archive`` into ``dest``; ``dest`` only appears once extraction completed."""

        if dest.exists():
            raise ExtractionError(f"Extraction target already exists: {dest}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{dest.name}.", dir=dest.parent))
        try:
            try:
                with ZipFile(archive) as zf:
                    members = self._inspect(zf.infolist())
                    self._write_members(zf, members, staging)
            except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
                raise ExtractionError(f"Corrupt or unsupported archive {archive.name}: {exc}") from exc
            except OSError as exc:
                raise ExtractionError(f"Could not extract {archive.name}: {exc}") from exc
            os.replace(self._content_root(staging), dest)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
        return dest

    def _inspect(self, infos: list[zipfile.ZipInfo]) -> list[tuple[zipfile.ZipInfo, PurePosixPath]]:
        limits = self._limits
        if len(infos) > limits.max_entries:
            raise ExtractionError(f"Archive has too many entries ({len(infos)} > {limits.max_entries})")
        total = 0
        members: list[tuple[zipfile.ZipInfo, PurePosixPath]] = []
        files: set[PurePosixPath] = set()
        directories: set[PurePosixPath] = set()
        for info in infos:
            if not info.filename:
                continue
            path = _member_path(info.filename)
            if _is_symlink(info):
                raise ExtractionError(f"Archive contains a symbolic link entry: {info.filename!r}")
            total += info.file_size
            if total > limits.max_uncompressed_bytes:
                raise ExtractionError(
                    f"Archive expands beyond the {limits.max_uncompressed_bytes} byte limit"
                )
            if info.file_size > _RATIO_FLOOR_BYTES:
                ratio = info.file_size / max(info.compress_size, 1)
                if ratio > limits.max_ratio:
                    raise ExtractionError(f"Suspicious compression ratio for {info.filename!r}")
            members.append((info, path))
            (directories if info.is_dir() else files).add(path)
            directories.update(parent for parent in path.parents if parent.parts)
        clashes = sorted(str(path) for path in files & directories)
        if clashes:
            raise ExtractionError(f"Archive entry is both a file and a directory: {clashes[0]!r}")
        return members

    def _write_members(
        self,
        zf: ZipFile,
        members: Iterable[tuple[zipfile.ZipInfo, PurePosixPath]],
        staging: Path,
    ) -> None:
        budget = self._limits.max_uncompressed_bytes
        written = 0
        for info, relative in members:
            target = staging.joinpath(*relative.parts)
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info, "r") as src, target.open("wb") as out:
                while True:
                    chunk = src.read(1024 * 1024)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > budget:
                        raise ExtractionError(f"Archive expands beyond the {budget} byte limit")
                    out.write(chunk)

    @staticmethod
    def _content_root(staging: Path) -> Path:
        if (staging / MANIFEST_FILENAME).exists():
            return staging
        children = list(staging.iterdir())
        if len(children) == 1 and children[0].is_dir():
            return children[0]
        return staging


def create_archive(source_dir: Path, output: Path, *, exclude: Iterable[str] = ()) -> Path:
    """Zip ``source_dir`` deterministically (sorted entries, fixed timestamps) into ``output``."""

    excluded = set(exclude)
    output.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory() as tmp_dir:
        tmp_path = Path(tmp_dir) / output.name
        with ZipFile(tmp_path, "w", compression=ZIP_DEFLATED, compresslevel=9) as archive_file:
            for candidate in sorted(source_dir.rglob("*"), key=lambda item: item.relative_to(source_dir).as_posix()):
                if candidate.is_dir():
                    continue
                arcname = candidate.relative_to(source_dir).as_posix()
                if arcname in excluded:
                    continue
                info = zipfile.ZipInfo(arcname, date_time=_FIXED_TIMESTAMP)
                info.compress_type = ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                archive_file.writestr(info, candidate.read_bytes())
        shutil.move(str(tmp_path), output)
    return output


__all__ = ["ArchiveExtractor", "ExtractionLimits", "create_archive", "MAX_ENTRIES", "MAX_UNCOMPRESSED_BYTES"]
