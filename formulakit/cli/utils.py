"""
Shared utilities for CLI commands.

Provides the configuration, registry and executor wiring every command
needs, plus consistent console output.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

from formulakit.config.parser import FormulaKitConfig, load_config
from formulakit.core.download import DownloadProgress
from formulakit.formula.model import Formula
from formulakit.formula.parser import load_formula
from formulakit.formula.registry import FORMULA_SUFFIXES, FormulaRegistry
from formulakit.install.executor import InstallExecutor

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration and wiring
# ============================================================================


def load_cli_config(args) -> FormulaKitConfig:
    """
    Load configuration and apply global command-line overrides.

    --prefix replaces the configured prefix; --formula-path entries are
    searched before the configured formula paths.

    Raises:
        ConfigError: If the configuration file is invalid
    """
    config = load_config(getattr(args, "config", None), getattr(args, "home", None))

    if getattr(args, "prefix", None):
        config.prefix = Path(args.prefix).expanduser().absolute()

    extra_paths = getattr(args, "formula_path", None) or []
    if extra_paths:
        config.formula_paths = [
            Path(p).expanduser() for p in extra_paths
        ] + config.formula_paths

    logger.debug(f"Home: {config.home}, prefix: {config.prefix}")
    return config


def build_registry(config: FormulaKitConfig) -> FormulaRegistry:
    """Registry of every formula in the configured search paths."""
    return FormulaRegistry.from_paths(config.formula_paths)


def build_executor(config: FormulaKitConfig, show_progress: bool = False) -> InstallExecutor:
    """Executor wired from configuration, optionally printing download progress."""
    callback = _print_progress if show_progress else None
    return InstallExecutor.from_config(config, progress_callback=callback)


def is_formula_file(target: str) -> bool:
    """True if an install target names a formula file rather than a formula."""
    path = Path(target)
    return path.suffix.lower() in FORMULA_SUFFIXES or path.is_file()


def resolve_targets(targets: List[str], config: FormulaKitConfig) -> List[Formula]:
    """
    Resolve install targets to formulas.

    Targets are formula names (looked up in the search paths) or formula
    files. The search paths are only scanned when a name is requested.

    Returns:
        Formulas in request order

    Raises:
        FormulaError: If a formula file is invalid
        FormulaNotFoundError: If a name is not in the search paths
    """
    formulas = []
    search: Optional[FormulaRegistry] = None

    for target in targets:
        if is_formula_file(target):
            formulas.append(load_formula(Path(target)))
            continue
        if search is None:
            search = build_registry(config)
        formulas.append(search.get(target))

    return formulas


# ============================================================================
# Output
# ============================================================================


def _print_progress(progress: DownloadProgress) -> None:
    sys.stderr.write(f"\r{progress}")
    if progress.total_bytes and progress.bytes_downloaded >= progress.total_bytes:
        sys.stderr.write("\n")
    sys.stderr.flush()


def print_error(message: str, details: Optional[str] = None):
    """
    Print error message to stderr in consistent format.

    Args:
        message: Main error message
        details: Optional additional details
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        print(f"  {details}", file=sys.stderr)


def print_warning(message: str):
    """Print warning message to stderr."""
    print(f"WARNING: {message}", file=sys.stderr)


def safe_print(message: str, file=None):
    """
    Print message with safe encoding handling for limited consoles.

    Falls back to ASCII markers if the symbols can't be encoded.
    """
    try:
        print(message, file=file)
    except UnicodeEncodeError:
        safe_message = message.replace("✓", "[OK]").replace("✗", "[FAILED]")
        print(safe_message, file=file)
