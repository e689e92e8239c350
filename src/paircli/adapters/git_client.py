"""Git repository access through the ``git`` executable."""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Mapping
from urllib.parse import urlsplit, urlunsplit

from paircli.domain.errors import SourceResolutionError
from paircli.ports.fetch import GitClient
from paircli.settings import GIT_TOKEN_ENV

GIT_MISSING_MESSAGE = "git executable not found. Install git to use git repository sources."


def authenticated_url(url: str, token: str | None) -> str:
    """Embed ``token`` into an https URL that carries no credentials yet."""

    if not token:
        return url
    parts = urlsplit(url)
    if parts.scheme != "https" or "@" in parts.netloc:
        return url
    return urlunsplit(parts._replace(netloc=f"{token}@{parts.netloc}"))


class SubprocessGitClient(GitClient):
    def __init__(self, executable: str = "git", env: Mapping[str, str] | None = None) -> None:
        self._executable = executable
        self._env = dict(os.environ if env is None else env)

    @property
    def _token(self) -> str | None:
        return self._env.get(GIT_TOKEN_ENV) or None

    def default_branch(self, url: str) -> str:
        output = self._run(["ls-remote", "--symref", authenticated_url(url, self._token), "HEAD"], url)
        for line in output.splitlines():
            if line.startswith("ref:") and line.rstrip().endswith("HEAD"):
                ref = line.split()[1]
                return ref.removeprefix("refs/heads/")
        raise SourceResolutionError(
            f"Could not determine the default branch of {url}",
            hint="pass an explicit ref as <url>#<branch-or-tag>",
        )

    def clone(self, url: str, ref: str, destination: Path) -> None:
        args = ["clone", "--depth", "1", "--branch", ref, authenticated_url(url, self._token), str(destination)]
        try:
            self._run(args, url)
        except BaseException:
            if destination.exists():
                shutil.rmtree(destination, ignore_errors=True)
            raise

    def _run(self, args: list[str], display_url: str) -> str:
        env = dict(self._env)
        env.setdefault("GIT_TERMINAL_PROMPT", "0")
        try:
            completed = subprocess.run(
                [self._executable, *args],
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as exc:
            raise SourceResolutionError(GIT_MISSING_MESSAGE) from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or b"").decode("utf-8", "replace").strip()
            if self._token:
                detail = detail.replace(self._token, "***")
            raise SourceResolutionError(f"git {args[0]} failed for {display_url}: {detail}") from exc
        return completed.stdout.decode("utf-8", "replace")


__all__ = ["SubprocessGitClient", "authenticated_url", "GIT_MISSING_MESSAGE"]
