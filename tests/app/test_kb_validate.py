from __future__ import annotations

from pathlib import Path

import pytest
import requests

from paircli.app.kb_validate import check_skill, parse_frontmatter, validate_knowledge_base
from paircli.domain.registry import load_registry_config


def _write(root: Path, files: dict[str, str]) -> Path:
    for relative, content in files.items():
        (root / relative).parent.mkdir(parents=True, exist_ok=True)
        (root / relative).write_text(content, encoding="utf-8")
    return root


class DummyResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class DummySession:
    def __init__(self, statuses: dict[str, int]) -> None:
        self.statuses = statuses
        self.calls: list[str] = []

    def head(self, url: str, **kwargs):
        self.calls.append(url)
        if url not in self.statuses:
            raise requests.ConnectionError("unreachable")
        return DummyResponse(self.statuses[url])


@pytest.fixture()
def config(tmp_path: Path):
    return load_registry_config(tmp_path, ignore_project=True)


@pytest.fixture()
def kb(tmp_path: Path) -> Path:
    return _write(
        tmp_path / "project",
        {
            ".pair/knowledge/index.md": "# Index\n[guide](guides/a.md) [site](https://ok.example) [top](#x)\n",
            ".pair/knowledge/guides/a.md": "[home](/AGENTS.md) [down](https://down.example)\n",
            ".pair/adoption/tech-stack.md": "Language: [placeholder]\n",
            ".github/workflows/ci.yml": "name: ci\n",
            "AGENTS.md": "# Agents\n",
            ".claude/skills/review/SKILL.md": "---\nname: review\ndescription: Review PRs\nversion: 1.0.0\nauthor: pair\n---\n",
        },
    )


def test_valid_knowledge_base_passes_with_warnings(kb: Path, config) -> None:
    report = validate_knowledge_base(kb, config)

    assert report.valid
    assert report.error_count == 0
    assert report.warning_count == 1
    placeholders = [item for item in report.metadata if item.warnings]
    assert placeholders[0].warnings == ["Contains 1 unpopulated placeholder(s)"]
    assert "Result: PASS" in report.render()


def test_missing_registry_and_broken_links(kb: Path, config) -> None:
    (kb / "AGENTS.md").unlink()
    (kb / ".pair/knowledge/guides/a.md").write_text("[gone](missing.md#part)\n", encoding="utf-8")

    report = validate_knowledge_base(kb, config)

    assert not report.valid
    agents = next(item for item in report.registries if item.subject.startswith("agents"))
    assert agents.errors == [f"Path does not exist: {kb / 'AGENTS.md'}"]
    broken = [message for item in report.links for message in item.errors]
    assert broken == ["Broken internal link: missing.md#part"]
    payload = report.to_dict()
    assert payload["valid"] is False
    assert payload["errors"] == 2


def test_skill_frontmatter_checks(tmp_path: Path) -> None:
    missing = _write(tmp_path, {"a/SKILL.md": "# No frontmatter\n"}) / "a/SKILL.md"
    assert check_skill(missing).errors == ["Missing frontmatter section"]

    partial = _write(tmp_path, {"b/SKILL.md": "---\nname: b\n---\nbody\n"}) / "b/SKILL.md"
    finding = check_skill(partial)
    assert finding.errors == ["Missing required frontmatter field: description"]
    assert finding.warnings == [
        "Missing recommended frontmatter field: version",
        "Missing recommended frontmatter field: author",
    ]


def test_parse_frontmatter_rejects_non_mappings() -> None:
    assert parse_frontmatter("---\n- a\n- b\n---\n") is None
    assert parse_frontmatter("---\nname: [unclosed\n---\n") is None
    assert parse_frontmatter("---\nname: x\n---\n") == {"name": "x"}


def test_strict_mode_probes_external_links(kb: Path, config) -> None:
    session = DummySession({"https://ok.example": 200, "https://down.example": 503})

    report = validate_knowledge_base(kb, config, strict=True, session=session)

    assert report.valid
    warnings = [message for item in report.links for message in item.warnings]
    assert warnings == ["Unreachable external link: https://down.example"]
    assert sorted(session.calls) == ["https://down.example", "https://ok.example"]


def test_source_layout_reads_bundle_paths(tmp_path: Path, config) -> None:
    bundle = _write(tmp_path / "bundle", {".skills/review/SKILL.md": "---\nname: r\ndescription: d\nversion: 1\nauthor: a\n---\n"})
    report = validate_knowledge_base(bundle, config.without(["knowledge", "adoption", "github", "agents"]), layout="source")
    assert report.valid
    assert report.registries[0].subject == "skills (.skills)"
