from __future__ import annotations

import hashlib
import json
import os
import shutil
import sys
import zipfile
from pathlib import Path
from typing import Callable, Dict, Mapping

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
SANDBOX_HOME = ROOT / ".test_place" / "pair-home"
os.environ.setdefault("PAIR_HOME", str(SANDBOX_HOME))
SANDBOX_HOME.mkdir(parents=True, exist_ok=True)
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from paircli.adapters.http_downloader import HttpDownloader  # noqa: E402
from paircli.app.installer import KnowledgeBaseService  # noqa: E402
from paircli.cli import main as cli_main  # noqa: E402
from paircli.domain.errors import SourceResolutionError  # noqa: E402
from paircli.domain.source import release_url  # noqa: E402
from paircli.ports.fetch import Downloader, GitClient  # noqa: E402
from paircli.settings import RuntimeSettings  # noqa: E402

KB_VERSION = "1.2.0"

DEFAULT_FILES: Dict[str, str] = {
    ".pair/knowledge/index.md": "# Knowledge\n\nStart with [testing](guides/testing.md) and [stack](/.pair/adoption/tech-stack.md).\n",
    ".pair/knowledge/guides/testing.md": "# Testing\n\nBack to [index](../index.md).\n",
    ".pair/adoption/tech-stack.md": "# Tech stack\n\nLanguage: [placeholder]\n",
    ".github/workflows/ci.yml": "name: ci\non: [push]\n",
    "AGENTS.md": "# Agents\n\nRead [the knowledge base](.pair/knowledge/index.md).\n",
    ".skills/review/SKILL.md": "---\nname: review\ndescription: Review a pull request\nversion: 1.0.0\nauthor: pair\n---\n# Review\n",
}


def write_tree(root: Path, files: Mapping[str, str]) -> Path:
    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return root


def zip_dir(source: Path, archive: Path) -> Path:
    archive.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for candidate in sorted(source.rglob("*")):
            if candidate.is_file():
                zf.write(candidate, candidate.relative_to(source).as_posix())
    return archive


def write_sidecar(archive: Path, digest: str | None = None) -> Path:
    digest = digest or hashlib.sha256(archive.read_bytes()).hexdigest()
    sidecar = archive.with_name(archive.name + ".sha256")
    sidecar.write_text(f"{digest}  {archive.name}\n", encoding="utf-8")
    return sidecar


class FakeDownloader(Downloader):
    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.calls: list[str] = []

    def download(self, url: str, destination: Path) -> Path:
        self.calls.append(url)
        if url not in self.files:
            raise SourceResolutionError(f"Not found (404): {url}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.files[url])
        return destination

    def fetch_text(self, url: str) -> str | None:
        self.calls.append(url)
        data = self.files.get(url)
        return data.decode("utf-8") if data is not None else None


class FakeGitClient(GitClient):
    def __init__(self) -> None:
        self.repos: Dict[tuple[str, str], Path] = {}
        self.default_branches: Dict[str, str] = {}
        self.clones: list[tuple[str, str]] = []
        self.branch_lookups: list[str] = []

    def default_branch(self, url: str) -> str:
        self.branch_lookups.append(url)
        return self.default_branches.get(url, "main")

    def clone(self, url: str, ref: str, destination: Path) -> None:
        self.clones.append((url, ref))
        source = self.repos.get((url, ref))
        if source is None:
            raise SourceResolutionError(f"git clone failed for {url}: unknown ref {ref}")
        shutil.copytree(source, destination)
        (destination / ".git").mkdir()
        (destination / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")


@pytest.fixture()
def runtime_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> RuntimeSettings:
    """Isolated runtime settings (home, cache and logs under tmp_path)."""
    home = tmp_path / "pair-home"
    settings = RuntimeSettings(
        home_dir=home,
        cache_dir=home / "kb",
        log_dir=home / "logs",
        cli_version=KB_VERSION,
    )
    monkeypatch.setattr(cli_main, "SETTINGS", settings, raising=False)
    return settings


@pytest.fixture()
def make_bundle() -> Callable[..., Path]:
    def _make(root: Path, *, version: str = KB_VERSION, files: Mapping[str, str] | None = None, name: str = "pair-kb") -> Path:
        write_tree(root, DEFAULT_FILES if files is None else files)
        manifest = {
            "name": name,
            "version": version,
            "description": "pair knowledge base",
            "registries": [".pair/knowledge", ".pair/adoption", ".github", "AGENTS.md", ".skills"],
        }
        (root / "manifest.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        return root

    return _make


@pytest.fixture()
def make_archive(tmp_path: Path, make_bundle: Callable[..., Path]) -> Callable[..., Path]:
    def _make(name: str = "kb.zip", *, version: str = KB_VERSION, files: Mapping[str, str] | None = None, sidecar: bool = True) -> Path:
        source = make_bundle(tmp_path / f"src-{name}", version=version, files=files)
        archive = zip_dir(source, tmp_path / "artifacts" / name)
        if sidecar:
            write_sidecar(archive)
        return archive

    return _make


@pytest.fixture()
def fake_downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture()
def fake_git() -> FakeGitClient:
    return FakeGitClient()


@pytest.fixture()
def publish_release(tmp_path: Path, make_bundle: Callable[..., Path], fake_downloader: FakeDownloader) -> Callable[..., str]:
    """Register a release archive and its checksum with the fake downloader."""

    def _publish(
        version: str = KB_VERSION,
        *,
        files: Mapping[str, str] | None = None,
        url: str | None = None,
        digest: str | None = None,
        checksum: bool = True,
    ) -> str:
        source = make_bundle(tmp_path / f"release-{version}-{len(fake_downloader.files)}", version=version, files=files)
        archive = zip_dir(source, tmp_path / "releases" / f"knowledge-base-{version}-{len(fake_downloader.files)}.zip")
        url = url or release_url(version)
        data = archive.read_bytes()
        fake_downloader.files[url] = data
        if checksum:
            value = digest or hashlib.sha256(data).hexdigest()
            fake_downloader.files[url + ".sha256"] = f"{value}  knowledge-base-{version}.zip\n".encode("utf-8")
        return url

    return _publish


@pytest.fixture()
def kb_service(
    runtime_settings: RuntimeSettings,
    fake_downloader: FakeDownloader,
    fake_git: FakeGitClient,
    monkeypatch: pytest.MonkeyPatch,
) -> KnowledgeBaseService:
    service = KnowledgeBaseService(runtime_settings, downloader=fake_downloader, git=fake_git)
    monkeypatch.setattr(cli_main, "_build_service", lambda: service)
    return service


@pytest.fixture()
def no_retry_downloader() -> Callable[..., HttpDownloader]:
    def _make(session) -> HttpDownloader:
        return HttpDownloader(session, sleep=lambda _: None)

    return _make
