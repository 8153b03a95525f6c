"""
Per-run staging areas.

Each install run gets `<home>/staging/<formula>/` holding the downloaded
archive, the extracted sources (which become the build directory) and
scratch space for HOME/TMPDIR and install backups. A staging area is owned
by exactly one run (the caller holds the formula lock) and is removed when
the run ends, successfully or not.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Optional

from formulakit.core.filesystem import extract_archive, safe_rmtree

logger = logging.getLogger(__name__)


class StagingContext:
    """
    Working area for one install run.

    Attributes:
        staging_root: Parent directory shared by all staging areas
        root: This run's staging directory
        archive_path: Where the source archive is fetched to
        extract_dir: Where the archive is unpacked
        source_dir: Build directory (extract_dir or its single top-level dir)
        home_dir: HOME for build steps
        tmp_dir: TMPDIR for build steps
        backup_dir: Copies of files the installer overwrites
        env_overrides: Extra variables for build steps of this run
    """

    def __init__(self, staging_root: Path, formula_name: str, archive_name: str):
        self.staging_root = Path(staging_root)
        self.root = self.staging_root / formula_name
        self.archive_path = self.root / "download" / archive_name
        self.extract_dir = self.root / "src"
        self.source_dir = self.extract_dir
        self.home_dir = self.root / "home"
        self.tmp_dir = self.root / "tmp"
        self.backup_dir = self.root / "backup"
        self.env_overrides: Dict[str, str] = {}

    def create(self) -> "StagingContext":
        """
        Create a fresh staging directory.

        Anything left by an earlier run that died mid-way is discarded;
        runs never resume from partial state.
        """
        if self.root.exists():
            logger.info(f"Discarding leftover staging directory: {self.root}")
            safe_rmtree(self.root, require_prefix=self.staging_root)

        for directory in (
            self.archive_path.parent,
            self.extract_dir,
            self.home_dir,
            self.tmp_dir,
            self.backup_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

        logger.debug(f"Created staging directory: {self.root}")
        return self

    def extract(
        self, progress_callback: Optional[Callable[[int, int], None]] = None
    ) -> Path:
        """
        Unpack the fetched archive and locate the source root.

        Returns:
            The build directory

        Raises:
            ArchiveExtractionError: If the archive cannot be unpacked safely
        """
        extract_archive(self.archive_path, self.extract_dir, progress_callback)
        self.source_dir = self._normalize_root_directory(self.extract_dir)
        logger.debug(f"Source directory: {self.source_dir}")
        return self.source_dir

    @staticmethod
    def _normalize_root_directory(extract_dir: Path) -> Path:
        """
        Source archives usually wrap everything in one top-level folder
        (scenery-0.1.0/); when they do, that folder is the build root.
        """
        items = list(extract_dir.iterdir())
        if len(items) == 1 and items[0].is_dir():
            return items[0]
        return extract_dir

    def teardown(self) -> None:
        """Remove the staging directory."""
        safe_rmtree(self.root, require_prefix=self.staging_root)
        logger.debug(f"Removed staging directory: {self.root}")
