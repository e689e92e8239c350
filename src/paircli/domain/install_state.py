"""Install state derived from what exists on disk."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List

from paircli.domain.errors import AlreadyInstalledError, NotInstalledError
from paircli.domain.registry import CopyBehavior, RegistryConfig


class InstallState(str, Enum):
    NOT_INSTALLED = "not-installed"
    INSTALLED = "installed"


@dataclass(frozen=True)
class InstallStatus:
    state: InstallState
    found: List[str] = field(default_factory=list)

    @property
    def installed(self) -> bool:
        return self.state is InstallState.INSTALLED


def destination_present(path: Path) -> bool:
    if path.is_file():
        return True
    if path.is_dir():
        return any(path.iterdir())
    return False


def state_of(project_root: Path, config: RegistryConfig) -> InstallStatus:
    found = [
        entry.name
        for entry in config
        if entry.behavior is not CopyBehavior.SKIP and destination_present(entry.destination(project_root))
    ]
    if found:
        return InstallStatus(InstallState.INSTALLED, found)
    return InstallStatus(InstallState.NOT_INSTALLED)


def require_not_installed(project_root: Path, config: RegistryConfig) -> InstallStatus:
    status = state_of(project_root, config)
    if status.installed:
        raise AlreadyInstalledError(project_root, status.found)
    return status


def require_installed(project_root: Path, config: RegistryConfig) -> InstallStatus:
    status = state_of(project_root, config)
    if not status.installed:
        raise NotInstalledError(project_root)
    return status


__all__ = [
    "InstallState",
    "InstallStatus",
    "destination_present",
    "require_installed",
    "require_not_installed",
    "state_of",
]
