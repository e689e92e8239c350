"""Build distributable knowledge-base bundles from a project tree."""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence

from packaging.version import InvalidVersion, Version

from paircli.app.archive import create_archive
from paircli.app.integrity import companion_checksum_path, content_checksum, format_checksum_line, sha256_file
from paircli.domain.errors import KnowledgeBaseError
from paircli.domain.manifest import MANIFEST_FILENAME, Manifest, write_manifest
from paircli.domain.registry import CopyBehavior, RegistryConfig

LAYOUT_SOURCE = "source"
LAYOUT_TARGET = "target"
LAYOUTS = (LAYOUT_SOURCE, LAYOUT_TARGET)
DEFAULT_NAME = "kb-package"
DEFAULT_VERSION = "1.0.0"


class PackageError(KnowledgeBaseError):
    pass


@dataclass
class PackageResult:
    output: Path
    checksum_path: Path
    sha256: str
    manifest: Manifest
    included: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "output": str(self.output),
            "checksum": str(self.checksum_path),
            "sha256": self.sha256,
            "size_bytes": self.output.stat().st_size,
            "manifest": self.manifest.to_dict(),
            "included": list(self.included),
            "skipped": list(self.skipped),
        }


def registry_paths(entry_source: str, entry_target: str, layout: str) -> tuple[str, str]:
    """Return ``(read_from, store_at)`` relative paths for a registry under ``layout``."""

    if layout == LAYOUT_SOURCE:
        return entry_source, entry_source
    return entry_target, entry_source


def _copy_into(origin: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    if origin.is_dir():
        shutil.copytree(origin, destination, dirs_exist_ok=True)
    else:
        shutil.copy2(origin, destination)


class KnowledgeBasePackager:
    def __init__(self, config: RegistryConfig) -> None:
        self._config = config

    def package(
        self,
        source_dir: Path,
        output: Path | None = None,
        *,
        name: str = DEFAULT_NAME,
        version: str = DEFAULT_VERSION,
        description: str = "",
        author: str = "",
        layout: str = LAYOUT_TARGET,
        skip: Sequence[str] = (),
    ) -> PackageResult:
        if layout not in LAYOUTS:
            raise PackageError(f"Unknown layout '{layout}' (expected one of: {', '.join(LAYOUTS)})")
        try:
            Version(version)
        except InvalidVersion as exc:
            raise PackageError(f"Invalid package version: {version}") from exc
        if not source_dir.is_dir():
            raise PackageError(f"Source directory not found: {source_dir}")
        config = self._config.without(skip)
        output = output or source_dir / "dist" / f"knowledge-base-{version}.zip"
        if output.suffix.lower() != ".zip":
            raise PackageError(f"Output must be a .zip file: {output}")

        included: List[str] = []
        skipped: List[str] = []
        with tempfile.TemporaryDirectory(prefix="pair-package-") as tmp_dir:
            staging = Path(tmp_dir) / "bundle"
            staging.mkdir()
            for entry in config:
                if entry.behavior is CopyBehavior.SKIP:
                    skipped.append(entry.name)
                    continue
                read_from, store_at = registry_paths(entry.source, entry.target_path, layout)
                origin = source_dir / read_from
                if not origin.exists():
                    skipped.append(entry.name)
                    continue
                _copy_into(origin, staging / store_at)
                included.append(entry.name)
            if not included:
                raise PackageError(
                    f"No registry content found under {source_dir}",
                    hint="check --layout and the registry paths with `pair validate-config`",
                )
            (staging / MANIFEST_FILENAME).unlink(missing_ok=True)
            manifest = Manifest.create(
                name=name,
                version=version,
                registries=[config.entries[item].source for item in included],
                description=description,
                author=author,
                content_checksum=content_checksum(staging),
            )
            write_manifest(manifest, staging)
            try:
                create_archive(staging, output)
                digest = sha256_file(output)
                checksum_path = companion_checksum_path(output)
                checksum_path.write_text(format_checksum_line(digest, output.name), encoding="utf-8")
            except BaseException:
                output.unlink(missing_ok=True)
                companion_checksum_path(output).unlink(missing_ok=True)
                raise
        return PackageResult(
            output=output,
            checksum_path=checksum_path,
            sha256=digest,
            manifest=manifest,
            included=included,
            skipped=skipped,
        )


__all__ = ["KnowledgeBasePackager", "PackageError", "PackageResult", "LAYOUTS", "LAYOUT_SOURCE", "LAYOUT_TARGET"]
