"""Content checks for a knowledge-base tree before it is packaged or shipped."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List

import requests
import yaml

from paircli.app.links import LINK_RE, iter_markdown
from paircli.app.packager import LAYOUT_TARGET, registry_paths
from paircli.domain.registry import RegistryConfig

SKILL_FILENAME = "SKILL.md"
ADOPTION_REGISTRY = "adoption"
REQUIRED_SKILL_FIELDS = ("name", "description")
RECOMMENDED_SKILL_FIELDS = ("version", "author")
_FRONTMATTER_RE = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)
_PLACEHOLDER_RE = re.compile(r"\[placeholder\]", re.IGNORECASE)
_EXTERNAL_RE = re.compile(r"^https?://", re.IGNORECASE)
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


@dataclass
class Finding:
    subject: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"subject": self.subject, "valid": self.valid, "errors": self.errors, "warnings": self.warnings}


@dataclass
class ValidationReport:
    root: Path
    layout: str
    registries: List[Finding] = field(default_factory=list)
    metadata: List[Finding] = field(default_factory=list)
    links: List[Finding] = field(default_factory=list)

    def _all(self) -> Iterable[Finding]:
        yield from self.registries
        yield from self.metadata
        yield from self.links

    @property
    def error_count(self) -> int:
        return sum(len(item.errors) for item in self._all())

    @property
    def warning_count(self) -> int:
        return sum(len(item.warnings) for item in self._all())

    @property
    def valid(self) -> bool:
        return self.error_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "layout": self.layout,
            "valid": self.valid,
            "errors": self.error_count,
            "warnings": self.warning_count,
            "registries": [item.to_dict() for item in self.registries],
            "metadata": [item.to_dict() for item in self.metadata if item.errors or item.warnings],
            "links": [item.to_dict() for item in self.links if item.errors or item.warnings],
        }

    def render(self) -> str:
        lines = [f"Knowledge base validation: {self.root} (layout: {self.layout})"]
        sections = (
            ("Registries", self.registries, True),
            ("Metadata", self.metadata, False),
            ("Links", self.links, False),
        )
        for title, findings, show_all in sections:
            shown = findings if show_all else [item for item in findings if item.errors or item.warnings]
            if not shown:
                continue
            lines.append(f"{title}:")
            for item in shown:
                marker = "ok" if item.valid else "FAIL"
                lines.append(f"  [{marker}] {item.subject}")
                lines.extend(f"      error: {message}" for message in item.errors)
                lines.extend(f"      warning: {message}" for message in item.warnings)
        lines.append(f"Result: {'PASS' if self.valid else 'FAIL'} ({self.error_count} errors, {self.warning_count} warnings)")
        return "\n".join(lines)


def parse_frontmatter(text: str) -> Dict[str, Any] | None:
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return None
    try:
        payload = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        return None
    return payload if isinstance(payload, dict) else None


def check_path(path: Path) -> Finding:
    finding = Finding(subject=str(path))
    if not path.exists():
        finding.errors.append(f"Path does not exist: {path}")
    elif path.is_dir() and not any(path.iterdir()):
        finding.warnings.append(f"Directory is empty: {path}")
    elif path.is_file() and path.stat().st_size == 0:
        finding.warnings.append(f"File is empty: {path}")
    return finding


def check_skill(path: Path) -> Finding:
    finding = Finding(subject=str(path))
    frontmatter = parse_frontmatter(path.read_text(encoding="utf-8", errors="replace"))
    if frontmatter is None:
        finding.errors.append("Missing frontmatter section")
        return finding
    for name in REQUIRED_SKILL_FIELDS:
        if not frontmatter.get(name):
            finding.errors.append(f"Missing required frontmatter field: {name}")
    for name in RECOMMENDED_SKILL_FIELDS:
        if not frontmatter.get(name):
            finding.warnings.append(f"Missing recommended frontmatter field: {name}")
    return finding


def check_adoption(path: Path) -> Finding:
    finding = Finding(subject=str(path))
    count = len(_PLACEHOLDER_RE.findall(path.read_text(encoding="utf-8", errors="replace")))
    if count:
        finding.warnings.append(f"Contains {count} unpopulated placeholder(s)")
    return finding


class LinkChecker:
    def __init__(self, root: Path, *, session: requests.Session | None = None, timeout: float = 10) -> None:
        self._root = root
        self._session = session
        self._timeout = timeout
        self._external_cache: Dict[str, bool] = {}

    def check(self, document: Path) -> Finding:
        finding = Finding(subject=str(document))
        for match in LINK_RE.finditer(document.read_text(encoding="utf-8", errors="replace")):
            href = match.group(3)
            if href.startswith("#"):
                continue
            if _EXTERNAL_RE.match(href):
                if self._session is not None and not self._reachable(self._session, href):
                    finding.warnings.append(f"Unreachable external link: {href}")
                continue
            if _SCHEME_RE.match(href):
                continue
            if not self._internal_exists(href, document):
                finding.errors.append(f"Broken internal link: {href}")
        return finding

    def _internal_exists(self, href: str, document: Path) -> bool:
        path_part = href.split("#", 1)[0].split("?", 1)[0]
        if not path_part:
            return True
        if path_part.startswith("/"):
            candidate = self._root / path_part.lstrip("/")
        else:
            candidate = document.parent / path_part
        return Path(os.path.normpath(candidate)).exists()

    def _reachable(self, session: requests.Session, url: str) -> bool:
        if url in self._external_cache:
            return self._external_cache[url]
        try:
            response = session.head(url, allow_redirects=True, timeout=self._timeout)
            ok = response.status_code < 400
        except requests.RequestException:
            ok = False
        self._external_cache[url] = ok
        return ok


def validate_knowledge_base(
    root: Path,
    config: RegistryConfig,
    *,
    layout: str = LAYOUT_TARGET,
    strict: bool = False,
    session: requests.Session | None = None,
) -> ValidationReport:
    """Check registry paths, skill/adoption metadata and markdown links under ``root``.

    ``strict`` additionally probes external links over HTTP.
    """

    report = ValidationReport(root=root, layout=layout)
    checker = LinkChecker(root, session=(session or requests.Session()) if strict else None)
    for entry in config:
        read_from, _ = registry_paths(entry.source, entry.target_path, layout)
        path = root / read_from
        finding = check_path(path)
        finding.subject = f"{entry.name} ({read_from})"
        report.registries.append(finding)
        if not path.exists():
            continue
        for document in iter_markdown([path]):
            if document.name == SKILL_FILENAME:
                report.metadata.append(check_skill(document))
            if entry.name == ADOPTION_REGISTRY:
                report.metadata.append(check_adoption(document))
            report.links.append(checker.check(document))
    return report


__all__ = [
    "Finding",
    "LinkChecker",
    "ValidationReport",
    "check_adoption",
    "check_path",
    "check_skill",
    "parse_frontmatter",
    "validate_knowledge_base",
]
