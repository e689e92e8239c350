from __future__ import annotations

import hashlib
import zipfile
from pathlib import Path

import pytest

from paircli.app.integrity import (
    check,
    companion_checksum_path,
    content_checksum,
    parse_checksum,
    sha256_file,
    tree_digest,
    verify,
)
from paircli.domain.errors import ChecksumMismatchError


def test_sha256_file_matches_hashlib(tmp_path: Path) -> None:
    payload = tmp_path / "kb.zip"
    payload.write_bytes(b"knowledge" * 1000)
    assert sha256_file(payload) == hashlib.sha256(b"knowledge" * 1000).hexdigest()


def test_parse_checksum_formats() -> None:
    digest = "A" * 64
    assert parse_checksum(f"{digest}\n") == "a" * 64
    assert parse_checksum(f"{digest}  knowledge-base-1.2.0.zip\n") == "a" * 64
    assert parse_checksum("  garbage  ") == "garbage"


def test_verify_accepts_sidecar_and_rejects_mismatch(tmp_path: Path) -> None:
    archive = tmp_path / "kb.zip"
    archive.write_bytes(b"bundle")
    sidecar = companion_checksum_path(archive)
    assert sidecar.name == "kb.zip.sha256"
    sidecar.write_text(f"{hashlib.sha256(b'bundle').hexdigest().upper()}  kb.zip\n", encoding="utf-8")
    assert verify(archive, sidecar) == hashlib.sha256(b"bundle").hexdigest()

    with pytest.raises(ChecksumMismatchError) as excinfo:
        verify(archive, "0" * 64)
    assert excinfo.value.expected == "0" * 64
    assert excinfo.value.actual == hashlib.sha256(b"bundle").hexdigest()


def test_check_reports_missing_expected(tmp_path: Path) -> None:
    archive = tmp_path / "kb.zip"
    archive.write_bytes(b"bundle")
    assert check(archive, None).status == "missing"


def test_content_checksum_matches_between_tree_and_zip(tmp_path: Path) -> None:
    root = tmp_path / "bundle"
    (root / "b").mkdir(parents=True)
    (root / "a.md").write_text("alpha", encoding="utf-8")
    (root / "b" / "c.md").write_text("gamma", encoding="utf-8")
    (root / "manifest.json").write_text("{}", encoding="utf-8")
    archive = tmp_path / "bundle.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        for name in ("b/c.md", "manifest.json", "a.md"):
            zf.write(root / name, name)

    expected = hashlib.sha256(b"alpha" + b"gamma").hexdigest()
    assert content_checksum(root) == expected
    assert content_checksum(archive) == expected


def test_tree_digest_detects_changes(tmp_path: Path) -> None:
    root = tmp_path / "tree"
    root.mkdir()
    (root / "one.md").write_text("1", encoding="utf-8")
    before = tree_digest(root)
    (root / "two.md").write_text("2", encoding="utf-8")
    assert tree_digest(root) != before
