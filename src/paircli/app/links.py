"""Rewrite internal markdown links between relative and project-absolute form."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List

from paircli.domain.errors import KnowledgeBaseError

STYLE_RELATIVE = "relative"
STYLE_ABSOLUTE = "absolute"
STYLES = (STYLE_RELATIVE, STYLE_ABSOLUTE)
KB_DIRNAME = ".pair"

LINK_RE = re.compile(r"(!?)\[([^\]]*)\]\(([^)\s]+)((?:\s+\"[^\"]*\")?)\)")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


@dataclass(frozen=True)
class LinkChange:
    file: str
    before: str
    after: str


@dataclass
class LinkUpdateReport:
    style: str
    dry_run: bool
    files_scanned: int = 0
    files_modified: int = 0
    total_links: int = 0
    links_by_category: Dict[str, int] = field(default_factory=dict)
    changes: List[LinkChange] = field(default_factory=list)

    def count(self, category: str) -> None:
        self.links_by_category[category] = self.links_by_category.get(category, 0) + 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "style": self.style,
            "dry_run": self.dry_run,
            "files_scanned": self.files_scanned,
            "files_modified": self.files_modified,
            "total_links": self.total_links,
            "links_by_category": dict(sorted(self.links_by_category.items())),
            "changes": [change.__dict__ for change in self.changes],
        }


def _classify(href: str) -> str | None:
    if href.startswith("#"):
        return "anchor"
    if _SCHEME_RE.match(href):
        return "external"
    return None


def _inside(project_root: Path, candidate: str) -> bool:
    root = os.path.normpath(str(project_root))
    return candidate == root or candidate.startswith(root + os.sep)


def _display_name(document: Path, project_root: Path) -> str:
    try:
        return document.relative_to(project_root).as_posix()
    except ValueError:
        return str(document)


def _read_markdown(document: Path, project_root: Path) -> str:
    try:
        return document.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise KnowledgeBaseError(
            f"Cannot rewrite links in {_display_name(document, project_root)}: not valid UTF-8",
            hint="re-save the file as UTF-8 and run the command again",
        ) from exc


def convert_href(href: str, document: Path, project_root: Path, style: str) -> tuple[str, str]:
    """Return ``(new_href, category)`` for a link found in ``document``."""

    category = _classify(href)
    if category is not None:
        return href, category
    path_part, hash_mark, fragment = href.partition("#")
    suffix = hash_mark + fragment
    if path_part.startswith("/"):
        resolved = os.path.normpath(os.path.join(str(project_root), path_part.lstrip("/")))
        is_absolute = True
    else:
        resolved = os.path.normpath(os.path.join(str(document.parent), path_part))
        is_absolute = False
    if not _inside(project_root, resolved):
        return href, "outside"
    if style == STYLE_RELATIVE:
        if not is_absolute:
            return href, "relative"
        relative = os.path.relpath(resolved, str(document.parent))
        return Path(relative).as_posix() + suffix, "converted"
    if is_absolute:
        return href, "absolute"
    relative_to_root = Path(resolved).relative_to(project_root)
    return "/" + relative_to_root.as_posix() + suffix, "converted"


def iter_markdown(roots: Iterable[Path]) -> Iterator[Path]:
    seen: set[Path] = set()
    for root in roots:
        if root.is_file():
            candidates: Iterable[Path] = [root] if root.suffix.lower() == ".md" else []
        elif root.is_dir():
            candidates = sorted(root.rglob("*.md"))
        else:
            continue
        for candidate in candidates:
            if candidate.is_file() and candidate not in seen:
                seen.add(candidate)
                yield candidate


def detect_link_style(roots: Iterable[Path]) -> str:
    """Guess the prevailing link style of an installed knowledge base (relative on ties)."""

    absolute = relative = 0
    for document in iter_markdown(roots):
        for match in LINK_RE.finditer(document.read_text(encoding="utf-8", errors="replace")):
            href = match.group(3)
            if _classify(href) is not None:
                continue
            if href.startswith("/"):
                absolute += 1
            else:
                relative += 1
    return STYLE_ABSOLUTE if absolute > relative else STYLE_RELATIVE


def update_links(
    project_root: Path,
    style: str = STYLE_RELATIVE,
    *,
    roots: Iterable[Path] | None = None,
    dry_run: bool = False,
) -> LinkUpdateReport:
    if style not in STYLES:
        raise ValueError(f"Unknown link style: {style}")
    project_root = Path(os.path.normpath(str(project_root)))
    if roots is None:
        kb_root = project_root / KB_DIRNAME
        if not kb_root.is_dir():
            raise KnowledgeBaseError(
                'No Knowledge Base found. Please run "pair install" first.',
                hint=f"expected {kb_root}",
            )
        roots = [kb_root]
    report = LinkUpdateReport(style=style, dry_run=dry_run)
    documents = [(document, _read_markdown(document, project_root)) for document in iter_markdown(roots)]
    for document, original in documents:
        report.files_scanned += 1
        relative_name = _display_name(document, project_root)

        def _rewrite(match: re.Match[str]) -> str:
            bang, text, href, title = match.groups()
            report.total_links += 1
            new_href, category = convert_href(href, document, project_root, style)
            report.count(category)
            if new_href == href:
                return match.group(0)
            report.changes.append(LinkChange(file=relative_name, before=href, after=new_href))
            return f"{bang}[{text}]({new_href}{title})"

        updated = LINK_RE.sub(_rewrite, original)
        if updated != original:
            report.files_modified += 1
            if not dry_run:
                document.write_text(updated, encoding="utf-8")
    return report


__all__ = [
    "LinkChange",
    "LinkUpdateReport",
    "STYLES",
    "STYLE_ABSOLUTE",
    "STYLE_RELATIVE",
    "convert_href",
    "detect_link_style",
    "iter_markdown",
    "update_links",
]
