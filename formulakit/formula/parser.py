"""Formula parser for FormulaKit.

This module turns structured formula descriptions (YAML or JSON files, or
already-decoded dictionaries) into validated Formula objects. Everything is
checked here, before any side effect of an install run happens.
"""

import re
import shlex
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Tuple
from urllib.parse import urlparse

import yaml

from formulakit.core.exceptions import FormulaError
from formulakit.core.verification import is_valid_digest, normalize_digest
from formulakit.formula.model import BuildStep, Formula

NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")
ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

REQUIRED_FIELDS = ["name", "url", "digest"]


def load_formula(path: Path) -> Formula:
    """
    Load and parse a formula file.

    Args:
        path: Path to a .yaml/.yml/.json formula file

    Returns:
        Parsed and validated formula

    Raises:
        FormulaError: If the file cannot be read or the formula is invalid
    """
    path = Path(path)
    if not path.is_file():
        raise FormulaError(f"Formula file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise FormulaError(f"Invalid YAML syntax in {path}: {e}") from e
    except OSError as e:
        raise FormulaError(f"Cannot read formula {path}: {e}") from e

    if data is None:
        raise FormulaError(f"Formula file is empty: {path}")

    try:
        return parse_formula(data)
    except FormulaError as e:
        raise FormulaError(f"{path}: {e}") from e


def parse_formula(data: Any) -> Formula:
    """
    Parse and validate a formula description.

    Args:
        data: Mapping with name, url, digest, dependencies, buildSteps and
            optional homepage, description, version, env, artifacts, test

    Returns:
        Formula

    Raises:
        FormulaError: If any field is missing or malformed

    Example:
        >>> formula = parse_formula({
        ...     "name": "scenery",
        ...     "url": "https://github.com/dmlittle/scenery/archive/v0.1.0.tar.gz",
        ...     "digest": "773372ac325ae746b95f0d503b08461bfa039bf9a0be6a3db2805aec69b61f74",
        ...     "dependencies": ["go"],
        ...     "buildSteps": ["go build -o scenery"],
        ... })
    """
    if not isinstance(data, dict):
        raise FormulaError("Formula must be a mapping")

    for field_name in REQUIRED_FIELDS:
        if field_name not in data or data[field_name] in (None, ""):
            raise FormulaError(f"Formula missing required field: {field_name}")

    name = _parse_name(data["name"])
    url = _parse_url(data["url"])
    digest = _parse_digest(data["digest"])

    steps_data = data.get("buildSteps", data.get("build_steps"))
    if not steps_data or not isinstance(steps_data, list):
        raise FormulaError("buildSteps must be a non-empty list")
    build_steps = [_parse_build_step(item, i) for i, item in enumerate(steps_data)]

    return Formula(
        name=name,
        url=url,
        digest=digest,
        build_steps=tuple(build_steps),
        dependencies=_parse_dependencies(data.get("dependencies") or []),
        homepage=_optional_str(data, "homepage"),
        description=_optional_str(data, "description"),
        version=_optional_str(data, "version"),
        env=_parse_env(data.get("env"), "env"),
        artifacts=_parse_artifacts(data.get("artifacts")),
        test_args=_parse_test(data.get("test", ["--version"])),
    )


def _parse_name(value: Any) -> str:
    if not isinstance(value, str) or not NAME_PATTERN.match(value):
        raise FormulaError(
            f"Invalid formula name: {value!r} "
            "(letters, digits, '.', '_', '+', '-'; no path separators)"
        )
    return value


def _parse_url(value: Any) -> str:
    if not isinstance(value, str):
        raise FormulaError("url must be a string")
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise FormulaError(f"url must be an http(s) URL: {value}")
    return value


def _parse_digest(value: Any) -> str:
    if not isinstance(value, str):
        raise FormulaError("digest must be a hex string")
    digest = normalize_digest(value)
    if not is_valid_digest(digest, "sha256"):
        raise FormulaError(f"digest must be a 64-character SHA256 hex string: {value}")
    return digest


def _optional_str(data: Dict[str, Any], key: str):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int, float)):
        raise FormulaError(f"{key} must be a string")
    return str(value)


def _parse_dependencies(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        raise FormulaError("dependencies must be a list of names")

    dependencies: List[str] = []
    for dep in value:
        if not isinstance(dep, str) or not NAME_PATTERN.match(dep):
            raise FormulaError(f"Invalid dependency name: {dep!r}")
        if dep not in dependencies:
            dependencies.append(dep)
    return tuple(dependencies)


def _parse_env(value: Any, where: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise FormulaError(f"{where} must be a mapping of variable names to values")

    env = {}
    for key, val in value.items():
        if not isinstance(key, str) or not ENV_NAME_PATTERN.match(key):
            raise FormulaError(f"Invalid environment variable name in {where}: {key!r}")
        if not isinstance(val, (str, int, float)) or isinstance(val, bool):
            raise FormulaError(f"{where}.{key} must be a string")
        env[key] = str(val)
    return env


def _parse_argv(value: Any, where: str) -> List[str]:
    if isinstance(value, str):
        try:
            argv = shlex.split(value)
        except ValueError as e:
            raise FormulaError(f"{where}: cannot split command {value!r}: {e}") from e
    elif isinstance(value, list):
        argv = value
    else:
        raise FormulaError(f"{where} must be a string or a list of arguments")

    if not argv:
        raise FormulaError(f"{where} is empty")
    for arg in argv:
        if not isinstance(arg, str):
            raise FormulaError(f"{where}: arguments must be strings, got {arg!r}")
    return list(argv)


def _parse_build_step(value: Any, index: int) -> BuildStep:
    where = f"buildSteps[{index}]"

    if isinstance(value, dict):
        if "program" not in value:
            raise FormulaError(f"{where} missing required field: program")
        program = value["program"]
        if not isinstance(program, str) or not program:
            raise FormulaError(f"{where}.program must be a non-empty string")
        args = value.get("args") or []
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise FormulaError(f"{where}.args must be a list of strings")
        return BuildStep(
            program=program, args=tuple(args), env=_parse_env(value.get("env"), where)
        )

    argv = _parse_argv(value, where)
    return BuildStep(program=argv[0], args=tuple(argv[1:]))


def _is_contained_relative(path: str) -> bool:
    pure = PurePosixPath(path)
    return (
        bool(pure.parts)
        and not pure.is_absolute()
        and ".." not in pure.parts
        and "\\" not in path
    )


def _parse_artifacts(value: Any) -> Mapping[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict) or not value:
        raise FormulaError("artifacts must be a non-empty mapping of source to destination")

    artifacts = {}
    for source, destination in value.items():
        if not isinstance(source, str) or not _is_contained_relative(source):
            raise FormulaError(
                f"Artifact source must be a relative path inside the build directory: {source!r}"
            )
        if not isinstance(destination, str) or not _is_contained_relative(destination):
            raise FormulaError(
                f"Artifact destination must be a relative path inside the prefix: {destination!r}"
            )
        artifacts[str(PurePosixPath(source))] = str(PurePosixPath(destination))

    destinations = list(artifacts.values())
    if len(set(destinations)) != len(destinations):
        raise FormulaError("Two artifacts share the same destination")
    return artifacts


def _parse_test(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(_parse_argv(value, "test")) if value.strip() else ()
    if isinstance(value, list) and all(isinstance(a, str) for a in value):
        return tuple(value)
    raise FormulaError("test must be a string or a list of arguments")
