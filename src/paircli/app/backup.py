"""Snapshot and restore of registry destinations around an update."""

from __future__ import annotations

import secrets
import shutil
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Mapping

from paircli.app.integrity import tree_digest
from paircli.domain.errors import ApplyError

BACKUP_DIRNAME = ".pair-backups"


@dataclass(frozen=True)
class BackupEntry:
    registry: str
    original: Path
    backup: Path
    existed: bool


@dataclass
class BackupHandle:
    session_id: str
    root: Path
    entries: List[BackupEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "session": self.session_id,
            "path": str(self.root),
            "registries": [entry.registry for entry in self.entries if entry.existed],
        }


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def _copy(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, destination, symlinks=True)
    else:
        shutil.copy2(source, destination)


class BackupManager:
    def __init__(self, project_root: Path, backup_root: Path | None = None) -> None:
        self._project_root = project_root
        self._backup_root = backup_root or project_root / BACKUP_DIRNAME

    @property
    def backup_root(self) -> Path:
        return self._backup_root

    def snapshot(self, targets: Mapping[str, Path]) -> BackupHandle:
        session_id = f"{datetime.now().strftime('%Y%m%d-%H%M%S')}-{secrets.token_hex(3)}"
        handle = BackupHandle(session_id=session_id, root=self._backup_root / session_id)
        handle.root.mkdir(parents=True, exist_ok=False)
        try:
            for name, original in targets.items():
                backup = handle.root / name
                existed = original.exists()
                if existed:
                    _copy(original, backup)
                    if tree_digest(original) != tree_digest(backup):
                        raise ApplyError(f"Backup of {original} does not match the original")
                handle.entries.append(BackupEntry(name, original, backup, existed))
        except BaseException:
            self.discard(handle)
            raise
        return handle

    def restore(self, handle: BackupHandle) -> None:
        """Put every destination back exactly as it was at snapshot time."""
        for entry in handle.entries:
            _remove(entry.original)
            if entry.existed:
                _copy(entry.backup, entry.original)
            else:
                self._prune_parents(entry.original)

    def _prune_parents(self, path: Path) -> None:
        parent = path.parent
        while parent != self._project_root and self._project_root in parent.parents:
            if not parent.is_dir() or any(parent.iterdir()):
                break
            parent.rmdir()
            parent = parent.parent

    def discard(self, handle: BackupHandle) -> None:
        shutil.rmtree(handle.root, ignore_errors=True)
        if self._backup_root.is_dir() and not any(self._backup_root.iterdir()):
            self._backup_root.rmdir()

    @contextmanager
    def guard(self, targets: Mapping[str, Path], *, persist: bool = False) -> Iterator[BackupHandle]:
        handle = self.snapshot(targets)
        try:
            yield handle
        except BaseException:
            self.restore(handle)
            if not persist:
                self.discard(handle)
            raise
        if not persist:
            self.discard(handle)


__all__ = ["BACKUP_DIRNAME", "BackupEntry", "BackupHandle", "BackupManager"]
