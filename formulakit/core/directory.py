"""
Directory layout for FormulaKit.

Home directory (~/.formulakit/, or $FORMULAKIT_HOME):
    - config.yaml  : Optional configuration file
    - formulas/    : Default formula search path
    - manifests/   : One install manifest per installed formula
    - staging/     : Per-run staging areas (removed after every run)
    - lock/        : Per-formula lock files
    - prefix/      : Default install prefix (bin/, lib/, ...)
"""

import os
from pathlib import Path
from typing import Dict, Optional


class DirectoryError(Exception):
    """Base exception for directory-related errors."""

    pass


HOME_ENV_VAR = "FORMULAKIT_HOME"


def get_home_dir() -> Path:
    """
    Get the FormulaKit home directory.

    $FORMULAKIT_HOME wins when set; otherwise ~/.formulakit (or
    %USERPROFILE%\\.formulakit on Windows).

    Returns:
        Path to the home directory (not necessarily existing yet)

    Example:
        >>> get_home_dir()
        PosixPath('/home/user/.formulakit')
    """
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()

    if os.name == "nt":
        user_profile = os.environ.get("USERPROFILE")
        if not user_profile:
            raise DirectoryError(
                "USERPROFILE environment variable is not set. "
                "Cannot determine FormulaKit home directory."
            )
        return Path(user_profile) / ".formulakit"

    return Path.home() / ".formulakit"


def get_layout(home: Optional[Path] = None) -> Dict[str, Path]:
    """
    Get the standard subdirectories of a home directory.

    Args:
        home: Home directory (default: get_home_dir())

    Returns:
        Mapping of role -> path ('home', 'formulas', 'manifests',
        'staging', 'lock', 'prefix', 'config')
    """
    home = Path(home) if home is not None else get_home_dir()
    return {
        "home": home,
        "formulas": home / "formulas",
        "manifests": home / "manifests",
        "staging": home / "staging",
        "lock": home / "lock",
        "prefix": home / "prefix",
        "config": home / "config.yaml",
    }
