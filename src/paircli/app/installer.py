"""Install and update orchestration for knowledge-base bundles."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

from paircli.adapters.git_client import SubprocessGitClient
from paircli.adapters.http_downloader import HttpDownloader
from paircli.app.applier import ApplyReport, RegistryApplier
from paircli.app.backup import BackupHandle, BackupManager
from paircli.app.cache import CacheStore
from paircli.app.links import LinkUpdateReport, detect_link_style, update_links
from paircli.app.resolver import Bundle, SourceResolver
from paircli.domain.errors import ApplyError
from paircli.domain.install_state import InstallStatus, require_installed, require_not_installed, state_of
from paircli.domain.registry import RegistryConfig, load_registry_config
from paircli.domain.source import SourceDescriptor, parse_source
from paircli.ports.fetch import Downloader, GitClient
from paircli.settings import RuntimeSettings

LINK_STYLE_AUTO = "auto"


@dataclass
class InstallResult:
    action: str
    project_root: Path
    bundle: Dict[str, Any]
    report: ApplyReport
    links: LinkUpdateReport | None = None
    backup: BackupHandle | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": self.action,
            "project": str(self.project_root),
            "bundle": self.bundle,
            "report": self.report.to_dict(),
        }
        if self.links is not None:
            payload["links"] = self.links.to_dict()
        if self.backup is not None:
            payload["backup"] = self.backup.to_dict()
        return payload


class KnowledgeBaseService:
    def __init__(
        self,
        settings: RuntimeSettings,
        *,
        downloader: Downloader | None = None,
        git: GitClient | None = None,
        cache: CacheStore | None = None,
        applier: RegistryApplier | None = None,
    ) -> None:
        self._settings = settings
        self._downloader = downloader or HttpDownloader()
        self._git = git or SubprocessGitClient()
        self._cache = cache or CacheStore(settings.cache_dir)
        self._applier = applier or RegistryApplier()

    @property
    def cache(self) -> CacheStore:
        return self._cache

    def describe_source(self, raw: str | None, cwd: Path | None = None) -> SourceDescriptor:
        return parse_source(raw, self._settings.cli_version, cwd)

    def resolver(self, *, offline: bool = False) -> SourceResolver:
        return SourceResolver(self._cache, self._downloader, self._git, offline=offline)

    def load_config(self, project_root: Path, config_path: Path | None = None) -> RegistryConfig:
        return load_registry_config(project_root, config_path)

    def status(self, project_root: Path, config_path: Path | None = None) -> InstallStatus:
        return state_of(project_root, self.load_config(project_root, config_path))

    def list_targets(self, project_root: Path, config_path: Path | None = None) -> List[Dict[str, object]]:
        return self._applier.list_targets(self.load_config(project_root, config_path), project_root)

    def install(
        self,
        project_root: Path,
        *,
        source: str | None = None,
        offline: bool = False,
        config_path: Path | None = None,
        link_style: str | None = None,
    ) -> InstallResult:
        config = self.load_config(project_root, config_path)
        require_not_installed(project_root, config)
        descriptor = self.describe_source(source)
        bundle = self.resolver(offline=offline).resolve(descriptor)
        try:
            backups = BackupManager(project_root)
            with backups.guard(config.destinations(project_root)):
                report = self._applier.apply(bundle.root, config, project_root)
                links = self._rewrite_links(project_root, config, link_style)
        finally:
            bundle.cleanup()
        return InstallResult("install", project_root, bundle.to_dict(), report, links)

    def update(
        self,
        project_root: Path,
        *,
        source: str | None = None,
        offline: bool = False,
        config_path: Path | None = None,
        persist_backup: bool = False,
        link_style: str | None = None,
    ) -> InstallResult:
        config = self.load_config(project_root, config_path)
        require_installed(project_root, config)
        descriptor = self.describe_source(source)
        bundle = self.resolver(offline=offline).resolve(descriptor)
        destinations = config.destinations(project_root)
        if link_style == LINK_STYLE_AUTO:
            link_style = detect_link_style(destinations.values())
        try:
            return self._apply_update(project_root, config, bundle, persist_backup, link_style)
        finally:
            bundle.cleanup()

    def _apply_update(
        self,
        project_root: Path,
        config: RegistryConfig,
        bundle: Bundle,
        persist_backup: bool,
        link_style: str | None,
    ) -> InstallResult:
        backups = BackupManager(project_root)
        try:
            with backups.guard(config.destinations(project_root), persist=persist_backup) as handle:
                report = self._applier.apply(bundle.root, config, project_root)
                links = self._rewrite_links(project_root, config, link_style)
        except ApplyError as exc:
            raise ApplyError(exc.message, exc.report, restored=True) from exc
        return InstallResult(
            "update",
            project_root,
            bundle.to_dict(),
            report,
            links,
            backup=handle if persist_backup else None,
        )

    @staticmethod
    def _rewrite_links(project_root: Path, config: RegistryConfig, style: str | None) -> LinkUpdateReport | None:
        if not style:
            return None
        roots = list(config.destinations(project_root).values())
        return update_links(project_root, style, roots=roots)


__all__ = ["InstallResult", "KnowledgeBaseService", "LINK_STYLE_AUTO"]
