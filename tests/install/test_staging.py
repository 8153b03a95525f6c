"""
Tests for per-run staging areas.
"""

import pytest

from formulakit.install.staging import StagingContext
from tests.fixtures.formulas import build_source_archive


@pytest.fixture
def staging(tmp_path):
    return StagingContext(tmp_path / "staging", "scenery", "v0.1.0.tar.gz")


class TestStagingContext:
    """Tests for StagingContext."""

    def test_layout(self, staging, tmp_path):
        root = tmp_path / "staging" / "scenery"
        assert staging.root == root
        assert staging.archive_path == root / "download" / "v0.1.0.tar.gz"
        assert staging.source_dir == staging.extract_dir

    def test_create_makes_directories(self, staging):
        staging.create()

        for directory in (staging.extract_dir, staging.home_dir, staging.tmp_dir, staging.backup_dir):
            assert directory.is_dir()
        assert staging.archive_path.parent.is_dir()

    def test_create_discards_leftovers(self, staging):
        """Test state from a killed run is never resumed."""
        (staging.extract_dir / "scenery-0.1.0").mkdir(parents=True)
        (staging.extract_dir / "scenery-0.1.0" / "half-built.o").write_text("junk")

        staging.create()

        assert list(staging.extract_dir.iterdir()) == []

    def test_extract_uses_single_top_level_dir(self, staging):
        staging.create()
        staging.archive_path.write_bytes(build_source_archive())

        source_dir = staging.extract()

        assert source_dir == staging.extract_dir / "scenery-0.1.0"
        assert staging.source_dir == source_dir
        assert (source_dir / "build.py").is_file()

    def test_extract_flat_archive(self, tmp_path):
        staging = StagingContext(tmp_path / "staging", "flat", "flat.tar.gz").create()
        staging.archive_path.write_bytes(build_source_archive(top_dir="."))

        assert staging.extract() == staging.extract_dir

    def test_teardown(self, staging, tmp_path):
        staging.create()
        staging.teardown()

        assert not staging.root.exists()
        assert (tmp_path / "staging").exists()
