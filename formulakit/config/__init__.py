"""
Configuration loading for FormulaKit.
"""

from .parser import (
    BuildConfig,
    FetchConfig,
    FormulaKitConfig,
    default_config,
    load_config,
    parse_config,
)

__all__ = [
    "BuildConfig",
    "FetchConfig",
    "FormulaKitConfig",
    "default_config",
    "load_config",
    "parse_config",
]
