from __future__ import annotations

from pathlib import Path

import pytest

from paircli.domain.errors import AlreadyInstalledError, NotInstalledError
from paircli.domain.install_state import InstallState, require_installed, require_not_installed, state_of
from paircli.domain.registry import load_registry_config


def test_empty_project_is_not_installed(tmp_path: Path) -> None:
    config = load_registry_config(tmp_path)
    (tmp_path / ".pair" / "knowledge").mkdir(parents=True)
    status = state_of(tmp_path, config)
    assert status.state is InstallState.NOT_INSTALLED
    assert status.found == []


def test_any_populated_destination_means_installed(tmp_path: Path) -> None:
    config = load_registry_config(tmp_path)
    (tmp_path / "AGENTS.md").write_text("# agents\n", encoding="utf-8")
    status = state_of(tmp_path, config)
    assert status.installed
    assert status.found == ["agents"]


def test_gates_raise_and_write_nothing(tmp_path: Path) -> None:
    config = load_registry_config(tmp_path)
    with pytest.raises(NotInstalledError) as not_installed:
        require_installed(tmp_path, config)
    assert "pair install" in not_installed.value.render()
    assert list(tmp_path.iterdir()) == []

    (tmp_path / ".github").mkdir()
    (tmp_path / ".github" / "CODEOWNERS").write_text("* @acme\n", encoding="utf-8")
    with pytest.raises(AlreadyInstalledError) as already:
        require_not_installed(tmp_path, config)
    assert "pair update" in already.value.render()
    assert already.value.found == ["github"]
