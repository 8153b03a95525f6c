"""
Tests for archive extraction and safe file operations.
"""

import io
import tarfile
import zipfile

import pytest

from formulakit.core.exceptions import (
    ArchiveExtractionError,
    InsecureArchiveError,
    UnsupportedArchiveFormat,
)
from formulakit.core.filesystem import (
    atomic_write,
    extract_archive,
    is_relative_to,
    safe_rmtree,
)


def write_tar(path, members, mode="w:gz"):
    with tarfile.open(path, mode) as tar:
        for name, content in members.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))


class TestExtractArchive:
    """Tests for extract_archive."""

    @pytest.mark.parametrize("suffix,mode", [(".tar.gz", "w:gz"), (".tar.bz2", "w:bz2"), (".tar", "w")])
    def test_extract_tar_variants(self, tmp_path, suffix, mode):
        archive = tmp_path / f"src{suffix}"
        write_tar(archive, {"pkg/main.go": "package main\n"}, mode)

        extract_archive(archive, tmp_path / "out")

        assert (tmp_path / "out" / "pkg" / "main.go").read_text() == "package main\n"

    def test_extract_zip_keeps_mode(self, tmp_path):
        archive = tmp_path / "src.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            info = zipfile.ZipInfo("pkg/configure")
            info.external_attr = 0o755 << 16
            zf.writestr(info, "#!/bin/sh\n")

        extract_archive(archive, tmp_path / "out")

        extracted = tmp_path / "out" / "pkg" / "configure"
        assert extracted.read_text() == "#!/bin/sh\n"
        assert extracted.stat().st_mode & 0o111

    def test_rejects_traversal(self, tmp_path):
        archive = tmp_path / "evil.tar.gz"
        write_tar(archive, {"../escaped.txt": "gotcha"})

        with pytest.raises(InsecureArchiveError):
            extract_archive(archive, tmp_path / "out")

        assert not (tmp_path / "escaped.txt").exists()

    def test_unsupported_format(self, tmp_path):
        archive = tmp_path / "src.rar"
        archive.write_bytes(b"whatever")

        with pytest.raises(UnsupportedArchiveFormat):
            extract_archive(archive, tmp_path / "out")

    def test_corrupt_archive(self, tmp_path):
        archive = tmp_path / "src.tar.gz"
        archive.write_bytes(b"not a tarball")

        with pytest.raises(ArchiveExtractionError):
            extract_archive(archive, tmp_path / "out")

    def test_missing_archive(self, tmp_path):
        with pytest.raises(ArchiveExtractionError, match="Archive not found"):
            extract_archive(tmp_path / "missing.tar.gz", tmp_path / "out")


class TestSafeFileOperations:
    """Tests for atomic_write and safe_rmtree."""

    def test_atomic_write_creates_parents(self, tmp_path):
        target = tmp_path / "a" / "b" / "file.json"
        atomic_write(target, "{}\n")

        assert target.read_text() == "{}\n"
        assert list(target.parent.iterdir()) == [target]

    def test_atomic_write_replaces(self, tmp_path):
        target = tmp_path / "file.txt"
        target.write_text("old")
        atomic_write(target, "new")
        assert target.read_text() == "new"

    def test_safe_rmtree_inside_prefix(self, tmp_path):
        victim = tmp_path / "staging" / "scenery"
        (victim / "src").mkdir(parents=True)
        (victim / "src" / "file").write_text("x")

        safe_rmtree(victim, require_prefix=tmp_path / "staging")

        assert not victim.exists()
        assert (tmp_path / "staging").exists()

    def test_safe_rmtree_refuses_outside_prefix(self, tmp_path):
        outside = tmp_path / "important"
        outside.mkdir()

        with pytest.raises(ValueError, match="Refusing to delete"):
            safe_rmtree(outside, require_prefix=tmp_path / "staging")
        with pytest.raises(ValueError):
            safe_rmtree(tmp_path / "staging", require_prefix=tmp_path / "staging")

        assert outside.exists()

    def test_is_relative_to(self, tmp_path):
        assert is_relative_to(tmp_path / "a" / "b", tmp_path)
        assert not is_relative_to(tmp_path, tmp_path / "a")
