"""
Controlled build environment.

Build steps never inherit the ambient process environment wholesale. The
base environment is assembled from:
- PATH: directories of resolved build dependencies, then os.defpath
- HOME and TMPDIR: inside the staging area
- variables explicitly allow-listed in configuration

Each declared dependency (e.g. 'go') is located through an override
variable FORMULAKIT_<DEP>_ROOT, falling back to a lookup on the ambient
PATH.
"""

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from formulakit.core.exceptions import MissingDependencyError

logger = logging.getLogger(__name__)

PLACEHOLDERS = ("buildpath", "prefix", "name")


def dependency_env_var(dependency: str) -> str:
    """
    Override variable naming a dependency's installation root.

    Example:
        >>> dependency_env_var("go")
        'FORMULAKIT_GO_ROOT'
        >>> dependency_env_var("pkg-config")
        'FORMULAKIT_PKG_CONFIG_ROOT'
    """
    slug = re.sub(r"[^A-Za-z0-9]", "_", dependency).upper()
    return f"FORMULAKIT_{slug}_ROOT"


def expand_placeholders(value: str, context: Mapping[str, str]) -> str:
    """Replace {buildpath}, {prefix} and {name}; other braces are left alone."""
    for key in PLACEHOLDERS:
        if key in context:
            value = value.replace("{" + key + "}", str(context[key]))
    return value


class BuildEnvironment:
    """
    Resolves build dependencies and composes step environments.

    Attributes:
        passthrough: Ambient variable names copied into the build environment
    """

    def __init__(
        self,
        passthrough: Iterable[str] = (),
        ambient: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize build environment.

        Args:
            passthrough: Names of ambient variables allowed into builds
            ambient: Environment to read overrides from (default: os.environ)
        """
        self.passthrough = list(passthrough)
        self._ambient = ambient

    @property
    def ambient(self) -> Mapping[str, str]:
        return self._ambient if self._ambient is not None else os.environ

    def resolve_dependency(self, dependency: str) -> Path:
        """
        Find the directory holding a dependency's executables.

        Raises:
            MissingDependencyError: If neither the override nor PATH has it
        """
        env_var = dependency_env_var(dependency)
        override = self.ambient.get(env_var)

        if override:
            root = Path(override).expanduser()
            bin_dir = root / "bin"
            tool_dir = bin_dir if bin_dir.is_dir() else root
            if tool_dir.is_dir():
                logger.debug(f"Using {env_var}: {tool_dir}")
                return tool_dir
            logger.warning(f"{env_var} points to a missing directory: {root}")

        found = shutil.which(dependency, path=self.ambient.get("PATH", os.defpath))
        if found:
            logger.debug(f"Found build dependency {dependency}: {found}")
            return Path(found).parent

        raise MissingDependencyError(dependency, env_var)

    def resolve(self, dependencies: Iterable[str]) -> List[Path]:
        """Resolve every dependency, keeping order and dropping duplicates."""
        tool_dirs: List[Path] = []
        for dependency in dependencies:
            tool_dir = self.resolve_dependency(dependency)
            if tool_dir not in tool_dirs:
                tool_dirs.append(tool_dir)
        return tool_dirs

    def compose(
        self,
        tool_dirs: Iterable[Path],
        home: Path,
        tmp_dir: Path,
        overlay: Optional[Mapping[str, str]] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        """
        Build the base environment for a run.

        Args:
            tool_dirs: Directories prepended to PATH
            home: HOME for build steps
            tmp_dir: TMPDIR for build steps
            overlay: Formula-wide variables, applied last
            context: Placeholder values for overlay expansion

        Returns:
            Environment mapping for subprocess
        """
        env: Dict[str, str] = {}
        for name in self.passthrough:
            if name in self.ambient:
                env[name] = self.ambient[name]

        path_entries = [str(d) for d in tool_dirs]
        path_entries += [p for p in os.defpath.split(os.pathsep) if p]
        env["PATH"] = os.pathsep.join(dict.fromkeys(path_entries))
        env["HOME"] = str(home)
        env["TMPDIR"] = str(tmp_dir)

        for key, value in (overlay or {}).items():
            env[key] = expand_placeholders(value, context or {})

        return env
