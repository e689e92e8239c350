"""Error taxonomy for knowledge-base install and update flows."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence


class KnowledgeBaseError(RuntimeError):
    """Base class for every failure the CLI reports as a handled error."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def render(self) -> str:
        if self.hint:
            return f"{self.message}\n  hint: {self.hint}"
        return self.message


class SourceResolutionError(KnowledgeBaseError):
    pass


class OfflineError(SourceResolutionError):
    def __init__(self, what: str) -> None:
        super().__init__(
            f"{what} is not cached and network access is disabled (--offline)",
            hint="re-run without --offline or point --source at a local bundle",
        )


class ChecksumMismatchError(KnowledgeBaseError):
    def __init__(self, path: Path, expected: str, actual: str) -> None:
        super().__init__(
            f"Checksum mismatch for {path.name}: expected {expected}, got {actual}",
            hint="the artifact is corrupted or was tampered with; download it again",
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class ExtractionError(KnowledgeBaseError):
    pass


class ManifestInvalidError(KnowledgeBaseError):
    def __init__(self, message: str, errors: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.errors = list(errors)


class AlreadyInstalledError(KnowledgeBaseError):
    def __init__(self, project_root: Path, found: Sequence[str]) -> None:
        listed = ", ".join(found)
        super().__init__(
            f"Knowledge base already installed in {project_root} ({listed})",
            hint="use `pair update` to refresh an existing installation",
        )
        self.found = list(found)


class NotInstalledError(KnowledgeBaseError):
    def __init__(self, project_root: Path) -> None:
        super().__init__(
            f"No knowledge base installed in {project_root}",
            hint="use `pair install` first",
        )


class ApplyError(KnowledgeBaseError):
    def __init__(self, message: str, report: Any = None, *, restored: bool = False) -> None:
        hint = "previous content was restored from backup" if restored else None
        super().__init__(message, hint=hint)
        self.report = report
        self.restored = restored


class ConfigError(KnowledgeBaseError):
    def __init__(self, message: str, errors: Sequence[str] = ()) -> None:
        detail = message
        if errors:
            detail = message + "\n" + "\n".join(f"  - {item}" for item in errors)
        super().__init__(detail)
        self.errors = list(errors)


__all__ = [
    "KnowledgeBaseError",
    "SourceResolutionError",
    "OfflineError",
    "ChecksumMismatchError",
    "ExtractionError",
    "ManifestInvalidError",
    "AlreadyInstalledError",
    "NotInstalledError",
    "ApplyError",
    "ConfigError",
]
