"""
Install command implementation.

Builds and installs formulas given by name or by formula file.

Exit codes:
    0: every formula installed (or already up to date)
    1: a fetch, verify, build or install stage failed
    2: invalid formula input or unknown formula name
    130: interrupted with Ctrl-C
"""

import logging
import sys
from typing import List

from formulakit.cli.utils import (
    build_executor,
    load_cli_config,
    print_error,
    resolve_targets,
    safe_print,
)
from formulakit.core.exceptions import FormulaError, InstallCancelled
from formulakit.formula.model import Formula, formula_digest
from formulakit.formula.registry import FormulaRegistry
from formulakit.install.executor import CancellationToken, InstallOutcome, Planner

logger = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_INVALID_FORMULA = 2
EXIT_INTERRUPTED = 130


def run(args) -> int:
    """
    Run the install command.

    Args:
        args: Parsed command-line arguments with:
            - targets: Formula names or formula files
            - force: Reinstall even when up to date
            - jobs: Number of parallel installs

    Returns:
        Exit code
    """
    if args.jobs < 1:
        print_error("--jobs must be at least 1")
        return EXIT_INVALID_FORMULA

    config = load_cli_config(args)

    try:
        formulas = resolve_targets(args.targets, config)
        registry = _registry_for(formulas)
    except FormulaError as e:
        print_error(str(e))
        return EXIT_INVALID_FORMULA

    show_progress = not args.quiet and sys.stderr.isatty()
    planner = Planner(registry, build_executor(config, show_progress=show_progress))

    outcomes = planner.install_all(
        [formula.name for formula in formulas],
        max_workers=args.jobs,
        cancel_token=CancellationToken(),
        force=args.force,
    )

    for outcome in outcomes:
        _report(outcome, config.prefix)

    if all(outcome.success for outcome in outcomes):
        return 0
    if any(isinstance(outcome.error, InstallCancelled) for outcome in outcomes):
        return EXIT_INTERRUPTED
    return EXIT_FAILED


def _registry_for(formulas: List[Formula]) -> FormulaRegistry:
    """Registry of the requested formulas; the same name twice must mean the same formula."""
    registry = FormulaRegistry()
    for formula in formulas:
        if formula.name not in registry:
            registry.add(formula)
        elif formula_digest(registry.get(formula.name)) != formula_digest(formula):
            raise FormulaError(f"Conflicting formulas named '{formula.name}' were given")
    return registry


def _report(outcome: InstallOutcome, prefix) -> None:
    name = outcome.formula.name
    if outcome.success:
        if outcome.was_cached:
            safe_print(f"✓ {name} is already installed")
        else:
            count = len(outcome.manifest.entries) if outcome.manifest else 0
            safe_print(f"✓ Installed {name} ({count} file(s) in {prefix})")
        return

    stage = outcome.failed_stage.value if outcome.failed_stage else "unknown"
    print_error(f"{name} failed while {stage}", str(outcome.error))
