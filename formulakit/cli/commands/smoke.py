"""
Test command implementation.

Runs an installed formula's executable with its declared test arguments.
"""

import logging

from formulakit.cli.utils import (
    build_executor,
    load_cli_config,
    print_error,
    resolve_targets,
    safe_print,
)
from formulakit.core.exceptions import FormulaKitError, ManifestNotFoundError

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the test command.

    Args:
        args: Parsed command-line arguments with:
            - name: Formula name or formula file

    Returns:
        Exit code (0 passed, 1 failed or not installed)
    """
    config = load_cli_config(args)

    try:
        formula = resolve_targets([args.name], config)[0]
        result = build_executor(config).smoke_test(formula)
    except ManifestNotFoundError:
        print_error(f"{args.name} is not installed")
        return 1
    except FormulaKitError as e:
        print_error(f"Smoke test of {args.name} failed", str(e))
        return 1

    if result.output:
        print(result.output.rstrip())
    safe_print(f"✓ {formula.name}: {' '.join(result.argv)} passed")
    return 0
