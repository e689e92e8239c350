"""On-disk cache of resolved knowledge-base bundles keyed by version or source hash."""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, List

from paircli.domain.errors import SourceResolutionError

LOCK_STALE_SECONDS = 600.0
LOCK_WAIT_SECONDS = 300.0
LOCK_POLL_SECONDS = 0.2


@dataclass(frozen=True)
class CacheEntry:
    key: str
    path: Path
    populated_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {"key": self.key, "path": str(self.path), "populated_at": self.populated_at.isoformat()}


class CacheStore:
    """Keyed bundle slots under ``root``.

    A slot directory is only ever created by an atomic rename of a fully
    populated staging directory, so a visible slot is always complete.
    Writers for the same key serialise on ``.locks/<key>.lock``.
    """

    def __init__(
        self,
        root: Path,
        *,
        stale_after: float = LOCK_STALE_SECONDS,
        wait_timeout: float = LOCK_WAIT_SECONDS,
        poll_interval: float = LOCK_POLL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._root = root
        self._stale_after = stale_after
        self._wait_timeout = wait_timeout
        self._poll_interval = poll_interval
        self._sleep = sleep

    @property
    def root(self) -> Path:
        return self._root

    @property
    def lock_dir(self) -> Path:
        return self._root / ".locks"

    @property
    def staging_dir(self) -> Path:
        return self._root / ".tmp"

    def slot(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self._root / key

    def get(self, key: str) -> Path | None:
        path = self.slot(key)
        return path if path.is_dir() else None

    def put(self, key: str, populate: Callable[[Path], None]) -> Path:
        """Populate ``key`` via ``populate(target)`` unless another writer already did.

        ``populate`` receives a path that does not exist yet and must create it.
        """

        slot = self.slot(key)
        if slot.is_dir():
            return slot
        with self._lock(key):
            if slot.is_dir():
                return slot
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=f"{key}-", dir=self.staging_dir))
            try:
                content = staging / "content"
                populate(content)
                if not content.is_dir():
                    raise SourceResolutionError(f"Cache population for {key} produced no content")
                if slot.is_dir():
                    return slot
                os.replace(content, slot)
            finally:
                shutil.rmtree(staging, ignore_errors=True)
        return slot

    def entries(self) -> List[CacheEntry]:
        if not self._root.is_dir():
            return []
        items: List[CacheEntry] = []
        for candidate in sorted(self._root.iterdir()):
            if candidate.name.startswith(".") or not candidate.is_dir():
                continue
            populated = datetime.fromtimestamp(candidate.stat().st_mtime, tz=timezone.utc)
            items.append(CacheEntry(key=candidate.name, path=candidate, populated_at=populated))
        return items

    def evict(self, key: str) -> bool:
        slot = self.slot(key)
        if not slot.exists():
            return False
        with self._lock(key):
            shutil.rmtree(slot)
        return True

    @contextmanager
    def _lock(self, key: str) -> Iterator[Path]:
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        lock_path = self.lock_dir / f"{key}.lock"
        waited = 0.0
        while True:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if self._is_stale(lock_path):
                    lock_path.unlink(missing_ok=True)
                    continue
                if waited >= self._wait_timeout:
                    raise SourceResolutionError(
                        f"Timed out waiting for cache lock {lock_path}",
                        hint="another pair process is populating this version; remove the lock file if it is stuck",
                    )
                self._sleep(self._poll_interval)
                waited += self._poll_interval
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(str(os.getpid()))
            break
        try:
            yield lock_path
        finally:
            lock_path.unlink(missing_ok=True)

    def _is_stale(self, lock_path: Path) -> bool:
        try:
            age = time.time() - lock_path.stat().st_mtime
        except FileNotFoundError:
            return False
        return age > self._stale_after


__all__ = ["CacheEntry", "CacheStore"]
