"""
List command implementation.

Shows installed formulas from their manifests.
"""

import logging

from formulakit.cli.utils import build_executor, load_cli_config

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the list command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (always 0)
    """
    config = load_cli_config(args)
    manifests = build_executor(config).installed()

    if not manifests:
        print("No formulas installed")
        return 0

    for manifest in manifests:
        print(f"{manifest.name}  ({len(manifest.entries)} file(s), installed {manifest.installed_at})")
        if args.verbose:
            for destination in manifest.destinations():
                print(f"  {destination}")

    return 0
