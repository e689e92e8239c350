from __future__ import annotations

import json
from pathlib import Path

import pytest

from paircli.cli import main as cli_main
from paircli.utils.telemetry import telemetry_path


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    root = tmp_path / "p1"
    root.mkdir()
    return root


@pytest.fixture(autouse=True)
def _telemetry_on(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PAIR_TELEMETRY", raising=False)


def test_install_then_reinstall_points_to_update(kb_service, make_archive, project: Path, capsys) -> None:
    archive = make_archive()

    assert cli_main.main(["install", str(project), "--source", str(archive)]) == 0
    out = capsys.readouterr().out
    assert "Knowledge base pair-kb v1.2.0 installed into" in out
    assert "  - knowledge: applied" in out
    assert (project / ".pair/knowledge/index.md").exists()

    assert cli_main.main(["install", str(project), "--source", str(archive)]) == 1
    err = capsys.readouterr().err
    assert err.startswith("install failed: Knowledge base already installed")
    assert "pair update" in err


def test_update_requires_install(kb_service, make_archive, project: Path, capsys) -> None:
    assert cli_main.main(["update", str(project), "--source", str(make_archive())]) == 1
    assert "pair install" in capsys.readouterr().err


def test_update_json(kb_service, make_archive, project: Path, capsys) -> None:
    cli_main.main(["install", str(project), "--source", str(make_archive())])
    capsys.readouterr()

    code = cli_main.main(["update", str(project), "--source", str(make_archive("v2.zip")), "--json", "--persist-backup"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["action"] == "update"
    assert payload["backup"]["registries"]
    assert Path(payload["backup"]["path"]).is_dir()


def test_bad_checksum_aborts_before_writing(kb_service, make_archive, project: Path, capsys) -> None:
    archive = make_archive(sidecar=False)
    archive.with_name(archive.name + ".sha256").write_text("0" * 64 + "  kb.zip\n", encoding="utf-8")

    assert cli_main.main(["install", str(project), "--source", str(archive)]) == 1

    assert "Checksum mismatch" in capsys.readouterr().err
    assert list(project.iterdir()) == []


def test_offline_miss_fails_fast(kb_service, project: Path, fake_downloader, capsys) -> None:
    assert cli_main.main(["install", str(project), "--offline"]) == 1
    assert "--offline" in capsys.readouterr().err
    assert fake_downloader.calls == []


def test_list_targets_json(kb_service, project: Path, capsys) -> None:
    assert cli_main.main(["install", str(project), "--list-targets", "--json"]) == 0
    targets = json.loads(capsys.readouterr().out)
    assert [item["name"] for item in targets] == ["knowledge", "adoption", "github", "agents", "skills"]
    assert not any(item["present"] for item in targets)


def test_package_verify_and_info(runtime_settings, make_bundle, tmp_path: Path, capsys) -> None:
    source = make_bundle(tmp_path / "kb")
    output = tmp_path / "out" / "kb.zip"

    assert cli_main.main(
        ["package", "-s", str(source), "-o", str(output), "--layout", "source", "--name", "acme", "--pkg-version", "3.0.0", "--json"]
    ) == 0
    packaged = json.loads(capsys.readouterr().out)
    assert packaged["manifest"]["version"] == "3.0.0"

    assert cli_main.main(["verify", str(output), "--json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["overall"] == "PASS"
    assert set(report["checks"]) == {"checksum", "archive", "structure", "manifest"}

    assert cli_main.main(["kb-info", str(output)]) == 0
    assert "Name:        acme" in capsys.readouterr().out

    output.write_bytes(b"broken")
    assert cli_main.main(["kb-verify", str(output)]) == 1
    assert "kb-verify failed: Invalid ZIP archive" in capsys.readouterr().err


def test_kb_validate_exit_code(runtime_settings, tmp_path: Path, capsys) -> None:
    root = tmp_path / "kb"
    (root / ".pair/knowledge").mkdir(parents=True)
    (root / ".pair/knowledge/index.md").write_text("[x](missing.md)\n", encoding="utf-8")

    code = cli_main.main(["kb-validate", str(root), "--skip-registries", "adoption,github,agents,skills", "--json"])

    assert code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["errors"] == 1


def test_unknown_command(runtime_settings, capsys) -> None:
    assert cli_main.main(["instal"]) == 1
    assert capsys.readouterr().err.strip() == "Unknown command: instal. Run `pair --help` for usage."


def test_validate_config(runtime_settings, project: Path, tmp_path: Path, capsys) -> None:
    assert cli_main.main(["validate-config", str(project)]) == 0
    assert "Configuration valid: 5 registries (from <bundled>)" in capsys.readouterr().out

    custom = tmp_path / "custom.json"
    custom.write_text(
        json.dumps({"asset_registries": {"docs": {"source": "docs", "target_path": ".pair", "behavior": "add", "description": "d"}}}),
        encoding="utf-8",
    )
    assert cli_main.main(["validate-config", str(project), "--config", str(custom)]) == 1
    err = capsys.readouterr().err
    assert "validate-config failed: Invalid registry configuration" in err
    assert "contains registry" in err


def test_update_link_dry_run(runtime_settings, project: Path, capsys) -> None:
    (project / ".pair/knowledge").mkdir(parents=True)
    index = project / ".pair/knowledge/index.md"
    index.write_text("[a](guide.md)\n", encoding="utf-8")

    assert cli_main.main(["update-link", str(project), "--absolute", "--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "[dry-run] .pair/knowledge/index.md: guide.md -> /.pair/knowledge/guide.md" in out
    assert index.read_text(encoding="utf-8") == "[a](guide.md)\n"


def test_update_link_rejects_non_utf8_markdown(runtime_settings, project: Path, capsys) -> None:
    (project / ".pair/knowledge").mkdir(parents=True)
    (project / ".pair/knowledge/a.md").write_bytes(b"\xff\xfe")

    assert cli_main.main(["update-link", str(project), "--dry-run"]) == 1
    assert "update-link failed: Cannot rewrite links in .pair/knowledge/a.md" in capsys.readouterr().err


def test_update_link_without_knowledge_base(runtime_settings, project: Path, capsys) -> None:
    assert cli_main.main(["update-link", str(project)]) == 1
    assert 'No Knowledge Base found. Please run "pair install" first.' in capsys.readouterr().err


def test_cache_list_and_evict(kb_service, publish_release, project: Path, capsys) -> None:
    publish_release()
    cli_main.main(["install", str(project)])
    capsys.readouterr()

    assert cli_main.main(["cache", "list", "--json"]) == 0
    assert [entry["key"] for entry in json.loads(capsys.readouterr().out)] == ["1.2.0"]

    assert cli_main.main(["cache", "evict", "1.2.0"]) == 0
    assert cli_main.main(["cache", "evict", "1.2.0"]) == 1
    capsys.readouterr()
    assert cli_main.main(["cache"]) == 0
    assert "Cache is empty" in capsys.readouterr().out


def test_failures_are_recorded_in_telemetry(kb_service, runtime_settings, make_archive, project: Path) -> None:
    cli_main.main(["update", str(project), "--source", str(make_archive())])

    path = telemetry_path(runtime_settings)
    events = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert events[-1]["event"] == "update"
    assert events[-1]["status"] == "error"
    assert events[-1]["payload"]["error"] == "NotInstalledError"
