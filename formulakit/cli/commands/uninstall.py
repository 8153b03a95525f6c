"""
Uninstall command implementation.

Removes the files recorded in a formula's install manifest.
"""

import logging

from formulakit.cli.utils import build_executor, load_cli_config, print_error, safe_print
from formulakit.core.exceptions import FormulaKitError, ManifestNotFoundError

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the uninstall command.

    Args:
        args: Parsed command-line arguments with:
            - name: Installed formula name

    Returns:
        Exit code (0 removed, 1 not installed or removal failed)
    """
    config = load_cli_config(args)
    executor = build_executor(config)

    try:
        manifest = executor.uninstall(args.name)
    except ManifestNotFoundError:
        print_error(f"{args.name} is not installed")
        return 1
    except FormulaKitError as e:
        print_error(f"Failed to uninstall {args.name}", str(e))
        return 1

    safe_print(f"✓ Uninstalled {manifest.name} ({len(manifest.entries)} file(s))")
    return 0
