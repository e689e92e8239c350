"""Apply bundle sub-trees to registry destinations inside a project."""

from __future__ import annotations

import filecmp
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from paircli.domain.errors import ApplyError
from paircli.domain.install_state import destination_present
from paircli.domain.manifest import MANIFEST_FILENAME
from paircli.domain.registry import CopyBehavior, RegistryConfig, RegistryEntry

STATUS_APPLIED = "applied"
STATUS_PLANNED = "planned"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class AppliedTarget:
    name: str
    source: str
    target: str
    behavior: str
    status: str
    files_written: int = 0
    files_unchanged: int = 0
    files_removed: int = 0
    detail: str | None = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "name": self.name,
            "source": self.source,
            "target": self.target,
            "behavior": self.behavior,
            "status": self.status,
            "files_written": self.files_written,
            "files_unchanged": self.files_unchanged,
            "files_removed": self.files_removed,
        }
        if self.detail:
            payload["detail"] = self.detail
        return payload


@dataclass
class ApplyReport:
    targets: List[AppliedTarget] = field(default_factory=list)
    dry_run: bool = False

    @property
    def failed(self) -> List[AppliedTarget]:
        return [target for target in self.targets if target.status == STATUS_FAILED]

    @property
    def files_written(self) -> int:
        return sum(target.files_written for target in self.targets)

    def to_dict(self) -> Dict[str, object]:
        return {
            "dry_run": self.dry_run,
            "targets": [target.to_dict() for target in self.targets],
            "files_written": self.files_written,
        }


def _plan_files(source: Path, include: tuple[str, ...]) -> Dict[str, Path]:
    """Map target-relative posix paths to bundle files; ``""`` means the source is a single file."""

    if source.is_file():
        return {"": source}
    planned: Dict[str, Path] = {}
    for candidate in sorted(source.rglob("*")):
        if not candidate.is_file():
            continue
        relative = candidate.relative_to(source).as_posix()
        if not _within_include(relative, include):
            continue
        planned[relative] = candidate
    return planned


def _within_include(relative: str, include: tuple[str, ...]) -> bool:
    if not include:
        return True
    return any(relative == item or relative.startswith(item + "/") for item in include)


class RegistryApplier:
    def apply(
        self,
        bundle_root: Path,
        config: RegistryConfig,
        project_root: Path,
        *,
        dry_run: bool = False,
    ) -> ApplyReport:
        report = ApplyReport(dry_run=dry_run)
        for entry in config:
            report.targets.append(self._apply_entry(bundle_root, entry, project_root, dry_run))
        if report.failed:
            names = ", ".join(target.name for target in report.failed)
            raise ApplyError(f"Failed to apply registries: {names}", report)
        return report

    def list_targets(self, config: RegistryConfig, project_root: Path) -> List[Dict[str, object]]:
        return [
            {
                "name": entry.name,
                "source": entry.source,
                "target": str(entry.destination(project_root)),
                "behavior": entry.behavior.value,
                "description": entry.description,
                "include": list(entry.include),
                "present": destination_present(entry.destination(project_root)),
            }
            for entry in config
        ]

    def _apply_entry(
        self, bundle_root: Path, entry: RegistryEntry, project_root: Path, dry_run: bool
    ) -> AppliedTarget:
        source = entry.origin(bundle_root)
        destination = entry.destination(project_root)
        row = AppliedTarget(
            name=entry.name,
            source=entry.source,
            target=str(destination),
            behavior=entry.behavior.value,
            status=STATUS_PLANNED if dry_run else STATUS_APPLIED,
        )
        if entry.behavior is CopyBehavior.SKIP:
            row.status = STATUS_SKIPPED
            row.detail = "behavior is skip"
            return row
        if not source.exists():
            row.status = STATUS_SKIPPED
            row.detail = f"{entry.source} not present in bundle"
            return row
        try:
            planned = _plan_files(source, entry.include)
            if entry.source == ".":
                planned.pop(MANIFEST_FILENAME, None)
            self._copy_planned(planned, destination, entry.behavior, row, dry_run)
            if entry.behavior is CopyBehavior.MIRROR and source.is_dir():
                self._remove_extras(destination, planned, entry.include, row, dry_run)
        except OSError as exc:
            row.status = STATUS_FAILED
            row.detail = str(exc)
        return row

    def _copy_planned(
        self,
        planned: Dict[str, Path],
        destination: Path,
        behavior: CopyBehavior,
        row: AppliedTarget,
        dry_run: bool,
    ) -> None:
        single_file = "" in planned
        if not single_file and destination.is_file():
            if behavior is CopyBehavior.ADD:
                raise OSError(f"{destination} is a file but the bundle provides a directory")
            if not dry_run:
                destination.unlink()
        for relative, origin in planned.items():
            target = destination if single_file else destination / relative
            if target.is_dir():
                if behavior is CopyBehavior.ADD:
                    row.files_unchanged += 1
                    continue
                if not dry_run:
                    shutil.rmtree(target)
            elif target.exists():
                if behavior is CopyBehavior.ADD:
                    row.files_unchanged += 1
                    continue
                if filecmp.cmp(origin, target, shallow=False):
                    row.files_unchanged += 1
                    continue
            row.files_written += 1
            if dry_run:
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(origin, target)

    def _remove_extras(
        self,
        destination: Path,
        planned: Dict[str, Path],
        include: tuple[str, ...],
        row: AppliedTarget,
        dry_run: bool,
    ) -> None:
        if not destination.is_dir():
            return
        for candidate in sorted(destination.rglob("*"), reverse=True):
            relative = candidate.relative_to(destination).as_posix()
            if not _within_include(relative, include):
                continue
            if candidate.is_dir() and not candidate.is_symlink():
                if not dry_run and not any(candidate.iterdir()) and not _has_planned_prefix(relative, planned):
                    candidate.rmdir()
                continue
            if relative in planned:
                continue
            row.files_removed += 1
            if not dry_run:
                candidate.unlink()


def _has_planned_prefix(relative: str, planned: Dict[str, Path]) -> bool:
    prefix = relative + "/"
    return any(key.startswith(prefix) for key in planned)


__all__ = [
    "AppliedTarget",
    "ApplyReport",
    "RegistryApplier",
    "STATUS_APPLIED",
    "STATUS_FAILED",
    "STATUS_PLANNED",
    "STATUS_SKIPPED",
]
