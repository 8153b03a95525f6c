"""
Tests for archive digest verification.
"""

import hashlib

import pytest

from formulakit.core.exceptions import DigestMismatchError
from formulakit.core.verification import (
    Verifier,
    compute_file_hash,
    digests_match,
    is_valid_digest,
    normalize_digest,
)


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "scenery-0.1.0.tar.gz"
    path.write_bytes(b"source archive contents")
    return path


class TestComputeFileHash:
    """Tests for compute_file_hash."""

    def test_sha256(self, archive):
        expected = hashlib.sha256(b"source archive contents").hexdigest()
        assert compute_file_hash(archive) == expected

    def test_sha512(self, archive):
        expected = hashlib.sha512(b"source archive contents").hexdigest()
        assert compute_file_hash(archive, "sha512") == expected

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            compute_file_hash(tmp_path / "missing")

    def test_unsupported_algorithm(self, archive):
        with pytest.raises(ValueError, match="Unsupported hash algorithm"):
            compute_file_hash(archive, "md5")

    def test_progress_reports_total(self, archive):
        calls = []
        compute_file_hash(archive, progress_callback=lambda done, total: calls.append((done, total)))
        assert calls[-1] == (archive.stat().st_size, archive.stat().st_size)


class TestDigestHelpers:
    """Tests for digest normalization and comparison."""

    def test_normalize_strips_prefix_and_case(self):
        assert normalize_digest("  SHA256:ABCDEF  ") == "abcdef"

    def test_valid_digest(self):
        assert is_valid_digest("a" * 64)
        assert not is_valid_digest("a" * 63)
        assert not is_valid_digest("g" * 64)
        assert is_valid_digest("b" * 128, "sha512")
        assert not is_valid_digest("a" * 64, "crc32")

    def test_match_ignores_case(self):
        assert digests_match("ab" * 32, "AB" * 32)
        assert not digests_match("ab" * 32, "ac" * 32)


class TestVerifier:
    """Tests for Verifier.verify."""

    def test_matching_digest(self, archive):
        digest = hashlib.sha256(archive.read_bytes()).hexdigest()
        assert Verifier().verify(archive, digest.upper()) == digest

    def test_mismatch_raises(self, archive):
        wrong = "0" * 64
        with pytest.raises(DigestMismatchError) as exc_info:
            Verifier().verify(archive, wrong)

        error = exc_info.value
        assert error.expected == wrong
        assert error.actual == compute_file_hash(archive)
        assert "scenery-0.1.0.tar.gz" in str(error)

    def test_single_byte_change_detected(self, archive):
        digest = compute_file_hash(archive)
        archive.write_bytes(b"source archive contentS")

        with pytest.raises(DigestMismatchError):
            Verifier().verify(archive, digest)

    def test_unsupported_algorithm(self):
        with pytest.raises(ValueError):
            Verifier("md5")
