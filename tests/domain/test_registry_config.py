from __future__ import annotations

import json
from pathlib import Path

import pytest

from paircli.domain.errors import ConfigError
from paircli.domain.registry import (
    CopyBehavior,
    build_config,
    load_registry_config,
    overlap_errors,
    validate_payload,
)


def _registry(source: str, target: str, behavior: str = "overwrite") -> dict[str, str]:
    return {"source": source, "target_path": target, "behavior": behavior, "description": source}


def test_bundled_defaults(tmp_path: Path) -> None:
    config = load_registry_config(tmp_path)
    assert config.names() == ["knowledge", "adoption", "github", "agents", "skills"]
    assert config.entries["adoption"].behavior is CopyBehavior.ADD
    assert config.entries["skills"].target_path == ".claude/skills"
    assert config.sources == ("<bundled>",)


def test_project_and_custom_configs_merge_per_registry(tmp_path: Path) -> None:
    (tmp_path / "pair.config.json").write_text(
        json.dumps({"asset_registries": {"github": {"behavior": "skip"}, "docs": _registry("docs", "docs/kb", "mirror")}}),
        encoding="utf-8",
    )
    custom = tmp_path / "custom.json"
    custom.write_text(json.dumps({"asset_registries": {"docs": {"target_path": "documentation"}}}), encoding="utf-8")

    config = load_registry_config(tmp_path, custom)

    assert config.entries["github"].behavior is CopyBehavior.SKIP
    assert config.entries["github"].source == ".github"
    assert config.entries["docs"].target_path == "documentation"
    assert config.entries["docs"].behavior is CopyBehavior.MIRROR
    assert config.sources[-1] == str(custom)


def test_unrelated_project_config_json_is_ignored(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text(json.dumps({"port": 8080}), encoding="utf-8")
    config = load_registry_config(tmp_path)
    assert len(config) == 5


def test_missing_required_fields_are_reported() -> None:
    errors = validate_payload({"asset_registries": {"broken": {"source": "a", "target_path": "b"}}})
    joined = "\n".join(errors)
    assert "behavior" in joined
    assert "description" in joined


def test_unknown_behavior_is_rejected() -> None:
    with pytest.raises(ConfigError, match="Invalid registry configuration"):
        build_config({"asset_registries": {"a": _registry("a", "a", "replace")}})


def test_overlapping_targets() -> None:
    errors = overlap_errors({"a": ".pair", "b": ".pair/knowledge", "c": "docs", "d": "docs/"})
    assert "Registry 'a' target .pair contains registry 'b' target .pair/knowledge" in errors
    assert "Registries 'c' and 'd' have the same target: docs" in errors
    assert overlap_errors({"a": ".pair/know", "b": ".pair/knowledge"}) == []


def test_paths_must_stay_inside_project() -> None:
    errors = validate_payload({"asset_registries": {"a": _registry("../outside", "/etc/kb")}})
    assert any("must stay inside the project" in error for error in errors)
    assert any("must be relative" in error for error in errors)


def test_invalid_custom_config_file(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigError, match="not valid JSON"):
        load_registry_config(tmp_path, broken)
    with pytest.raises(ConfigError, match="not found"):
        load_registry_config(tmp_path, tmp_path / "absent.json")


def test_without_drops_named_registries(tmp_path: Path) -> None:
    config = load_registry_config(tmp_path).without(["github", "skills"])
    assert config.names() == ["knowledge", "adoption", "agents"]
    with pytest.raises(ConfigError, match="Unknown registries: nope"):
        config.without(["nope"])
