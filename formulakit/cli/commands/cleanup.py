"""
Cleanup command implementation.

Removes stale lock files and staging directories left behind by runs that
were killed before they could tear down.
"""

import logging

from formulakit.cli.utils import build_executor, load_cli_config, print_warning
from formulakit.core.exceptions import InstallLockTimeout
from formulakit.core.filesystem import safe_rmtree

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the cleanup command.

    Args:
        args: Parsed command-line arguments with:
            - max_age: Lock file age threshold in hours

    Returns:
        Exit code (0 for success)
    """
    config = load_cli_config(args)
    executor = build_executor(config)

    removed_staging = 0
    if executor.staging_dir.is_dir():
        for staging in sorted(executor.staging_dir.iterdir()):
            if not staging.is_dir():
                continue
            try:
                # A held lock means a live run owns this staging area
                with executor.lock_manager.formula_lock(staging.name, timeout=0):
                    safe_rmtree(staging, require_prefix=executor.staging_dir)
            except InstallLockTimeout:
                logger.info(f"Skipping staging directory in use: {staging}")
                continue
            except OSError as e:
                print_warning(f"Could not remove {staging}: {e}")
                continue
            logger.info(f"Removed staging directory: {staging}")
            removed_staging += 1

    removed_locks = executor.lock_manager.cleanup_stale_locks(args.max_age)

    print(f"Removed {removed_staging} staging director(ies), {removed_locks} stale lock(s)")
    return 0
