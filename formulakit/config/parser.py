"""YAML configuration parser for FormulaKit.

This module provides parsing and validation for the optional
`<home>/config.yaml` (or `--config PATH`) file.

Example config.yaml:

    prefix: /opt/formulakit
    formula_paths:
      - ~/formulas
    lock_timeout: 600
    fetch:
      timeout: 30
      max_retries: 3
      backoff_base: 1
      backoff_cap: 30
    build:
      step_timeout: 1800
      test_timeout: 60
      passthrough_env: [LANG, SSL_CERT_FILE]
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from formulakit.core.directory import get_layout
from formulakit.core.exceptions import ConfigError


@dataclass
class FetchConfig:
    """Source download settings."""

    timeout: float = 30
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_cap: float = 30.0


@dataclass
class BuildConfig:
    """Build step settings."""

    step_timeout: Optional[float] = 3600
    test_timeout: Optional[float] = 60
    passthrough_env: List[str] = field(default_factory=list)


@dataclass
class FormulaKitConfig:
    """Complete FormulaKit configuration."""

    home: Path
    prefix: Path
    formula_paths: List[Path] = field(default_factory=list)
    lock_timeout: float = -1
    fetch: FetchConfig = field(default_factory=FetchConfig)
    build: BuildConfig = field(default_factory=BuildConfig)


def default_config(home: Optional[Path] = None) -> FormulaKitConfig:
    """Configuration used when no file is present."""
    layout = get_layout(home)
    return FormulaKitConfig(
        home=layout["home"],
        prefix=layout["prefix"],
        formula_paths=[layout["formulas"]],
    )


def load_config(
    config_path: Optional[Path] = None, home: Optional[Path] = None
) -> FormulaKitConfig:
    """
    Load configuration.

    Args:
        config_path: Explicit config file (must exist)
        home: Home directory (default: $FORMULAKIT_HOME or ~/.formulakit)

    Returns:
        Parsed configuration; defaults when no file exists

    Raises:
        ConfigError: If the file is missing (when explicit) or invalid
    """
    layout = get_layout(home)

    if config_path is None:
        config_path = layout["config"]
        if not config_path.exists():
            return default_config(layout["home"])
    elif not Path(config_path).exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    return parse_config(Path(config_path), layout["home"])


def parse_config(config_path: Path, home: Path) -> FormulaKitConfig:
    """
    Parse a configuration file.

    Raises:
        ConfigError: If configuration is invalid
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read configuration {config_path}: {e}") from e

    if data is None:
        return default_config(home)

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    return _parse_and_validate(data, home, config_path.parent)


def _resolve(value: Any, base: Path, key: str) -> Path:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty path string")
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base / path)


def _parse_and_validate(data: Dict[str, Any], home: Path, base: Path) -> FormulaKitConfig:
    """Parse and validate configuration data."""
    config = default_config(home)

    if "prefix" in data:
        config.prefix = _resolve(data["prefix"], base, "prefix")

    if "formula_paths" in data:
        paths = data["formula_paths"]
        if not isinstance(paths, list):
            raise ConfigError("formula_paths must be a list")
        config.formula_paths = [
            _resolve(p, base, "formula_paths entry") for p in paths
        ]

    if "lock_timeout" in data:
        config.lock_timeout = _parse_number(data["lock_timeout"], "lock_timeout")

    config.fetch = _parse_fetch_config(data.get("fetch") or {})
    config.build = _parse_build_config(data.get("build") or {})
    return config


def _parse_number(value: Any, key: str, minimum: Optional[float] = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number")
    if minimum is not None and value < minimum:
        raise ConfigError(f"{key} must be at least {minimum}")
    return value


def _parse_optional_timeout(value: Any, key: str) -> Optional[float]:
    if value is None:
        return None
    return _parse_number(value, key, minimum=0)


def _parse_fetch_config(data: Any) -> FetchConfig:
    """Parse fetch configuration."""
    if not isinstance(data, dict):
        raise ConfigError("fetch must be a mapping")

    fetch = FetchConfig()
    if "timeout" in data:
        fetch.timeout = _parse_number(data["timeout"], "fetch.timeout", minimum=0)
    if "max_retries" in data:
        retries = data["max_retries"]
        if isinstance(retries, bool) or not isinstance(retries, int) or retries < 1:
            raise ConfigError("fetch.max_retries must be a positive integer")
        fetch.max_retries = retries
    if "backoff_base" in data:
        fetch.backoff_base = _parse_number(data["backoff_base"], "fetch.backoff_base", 0)
    if "backoff_cap" in data:
        fetch.backoff_cap = _parse_number(data["backoff_cap"], "fetch.backoff_cap", 0)
    return fetch


def _parse_build_config(data: Any) -> BuildConfig:
    """Parse build configuration."""
    if not isinstance(data, dict):
        raise ConfigError("build must be a mapping")

    build = BuildConfig()
    if "step_timeout" in data:
        build.step_timeout = _parse_optional_timeout(
            data["step_timeout"], "build.step_timeout"
        )
    if "test_timeout" in data:
        build.test_timeout = _parse_optional_timeout(
            data["test_timeout"], "build.test_timeout"
        )
    if "passthrough_env" in data:
        names = data["passthrough_env"]
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise ConfigError("build.passthrough_env must be a list of variable names")
        build.passthrough_env = list(names)
    return build
