"""Runtime settings for the pair CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from paircli import __version__

HOME_ENV = "PAIR_HOME"
GIT_TOKEN_ENV = "PAIR_GIT_TOKEN"


@dataclass(frozen=True)
class RuntimeSettings:
    home_dir: Path
    cache_dir: Path
    log_dir: Path
    cli_version: str = __version__


def _default_home_dir() -> Path:
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".pair"


def load_settings(home_dir: Path | None = None) -> RuntimeSettings:
    base = home_dir or _default_home_dir()
    return RuntimeSettings(
        home_dir=base,
        cache_dir=base / "kb",
        log_dir=base / "logs",
    )


SETTINGS = load_settings()
