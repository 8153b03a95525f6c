"""
Per-formula mutual exclusion for FormulaKit.

Two install runs for the same formula must never overlap, whether they live
in different threads or different processes. Each formula gets its own lock
file under the lock directory; runs for different formulas never contend.

Usage:
    from formulakit.core.locking import LockManager

    lock_manager = LockManager(home / "lock")
    with lock_manager.formula_lock("scenery", timeout=-1):
        # This run exclusively owns the scenery staging area and manifest
        pass
"""

import logging
import re
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from formulakit.core.directory import get_home_dir
from formulakit.core.exceptions import InstallLockTimeout

logger = logging.getLogger(__name__)


def lock_file_name(formula_name: str) -> str:
    """Lock file name for a formula, with path-hostile characters replaced."""
    safe_name = re.sub(r"[^A-Za-z0-9._+-]", "-", formula_name)
    return f"formula-{safe_name}.lock"


class LockManager:
    """
    Manages per-formula lock files.

    Uses file-based locking with the `filelock` library, so locks are
    released automatically when the holding process dies.

    Attributes:
        lock_dir: Directory where lock files are stored
    """

    def __init__(self, lock_dir: Optional[Path] = None):
        """
        Initialize lock manager.

        Args:
            lock_dir: Directory for lock files (default: <home>/lock)
        """
        if lock_dir is None:
            lock_dir = get_home_dir() / "lock"

        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def lock_path(self, formula_name: str) -> Path:
        """Path of the lock file guarding formula_name."""
        return self.lock_dir / lock_file_name(formula_name)

    @contextmanager
    def formula_lock(self, formula_name: str, timeout: float = -1):
        """
        Acquire the lock for one formula.

        A second caller blocks until the holder releases the lock (or the
        timeout expires).

        Args:
            formula_name: Formula name
            timeout: Maximum wait in seconds; negative waits forever

        Yields:
            None

        Raises:
            InstallLockTimeout: If lock can't be acquired within timeout
        """
        lock_path = self.lock_path(formula_name)
        lock = FileLock(lock_path, timeout=timeout)

        try:
            lock.acquire()
        except Timeout as e:
            logger.error(
                f"Could not acquire lock for {formula_name} after {timeout}s. "
                "Another install of this formula may be running."
            )
            raise InstallLockTimeout(
                f"Could not acquire lock for {formula_name} after {timeout}s. "
                "Another install of this formula may be running."
            ) from e

        logger.debug(f"Acquired formula lock: {lock_path}")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Released formula lock: {lock_path}")

    def cleanup_stale_locks(self, max_age_hours: float = 24) -> int:
        """
        Remove lock files older than max_age_hours.

        A lock file left behind by a dead process does not block anyone
        (the OS lock died with it); this only keeps the directory tidy.

        Returns:
            Number of stale lock files removed
        """
        if not self.lock_dir.exists():
            return 0

        current_time = time.time()
        removed_count = 0

        for lock_file in self.lock_dir.glob("*.lock"):
            try:
                age_hours = (current_time - lock_file.stat().st_mtime) / 3600
                if age_hours > max_age_hours:
                    lock_file.unlink()
                    logger.info(f"Removed stale lock file: {lock_file}")
                    removed_count += 1
            except OSError as e:
                # Lock may be in use or already deleted
                logger.debug(f"Could not remove lock {lock_file}: {e}")

        return removed_count


__all__ = ["LockManager", "lock_file_name"]
