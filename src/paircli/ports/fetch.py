"""Port definitions for network access used by the source resolver."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class Downloader(ABC):
    @abstractmethod
    def download(self, url: str, destination: Path) -> Path:
        """Stream ``url`` into ``destination``; the file exists only once complete."""

    @abstractmethod
    def fetch_text(self, url: str) -> str | None:
        """Return the body of a small text resource, ``None`` when it does not exist (404)."""


class GitClient(ABC):
    @abstractmethod
    def default_branch(self, url: str) -> str:
        """Resolve the branch HEAD points at on the remote."""

    @abstractmethod
    def clone(self, url: str, ref: str, destination: Path) -> None:
        """Shallow-clone ``ref`` of ``url`` into ``destination``."""
