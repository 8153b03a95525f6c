"""Typed formula data model.

Formulas are immutable once parsed. Build steps are structured commands
(program + arguments + environment overlay), never shell strings.
"""

import hashlib
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple


def _frozen(mapping: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class BuildStep:
    """One build command."""

    program: str
    args: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "env", _frozen(self.env))

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]

    def to_dict(self) -> dict:
        return {"program": self.program, "args": list(self.args), "env": dict(self.env)}

    def __str__(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True)
class Formula:
    """
    Declarative description of one installable package.

    Attributes:
        name: Formula name (also the lock and manifest key)
        url: Source archive URL
        digest: Expected SHA256 of the archive (lower-case hex)
        build_steps: Ordered build commands, run in the extracted source dir
        dependencies: Build-time tools the steps need (e.g. 'go')
        homepage: Project homepage
        description: One-line description
        version: Package version
        env: Environment overlay applied to every build step
        artifacts: Build-relative source path -> prefix-relative destination
        test_args: Arguments for the installed executable's smoke test
    """

    name: str
    url: str
    digest: str
    build_steps: Tuple[BuildStep, ...]
    dependencies: Tuple[str, ...] = ()
    homepage: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)
    artifacts: Mapping[str, str] = field(default_factory=dict)
    test_args: Tuple[str, ...] = ("--version",)

    def __post_init__(self):
        object.__setattr__(self, "build_steps", tuple(self.build_steps))
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "test_args", tuple(self.test_args))
        object.__setattr__(self, "env", _frozen(self.env))
        artifacts = self.artifacts or {self.name: f"bin/{self.name}"}
        object.__setattr__(self, "artifacts", _frozen(artifacts))

    @property
    def archive_name(self) -> str:
        """File name of the source archive, taken from the URL path."""
        tail = self.url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
        return tail or f"{self.name}.tar.gz"

    @property
    def executable(self) -> Optional[str]:
        """Prefix-relative path of the first artifact installed under bin/."""
        for destination in self.artifacts.values():
            if destination.startswith("bin/"):
                return destination
        return None

    def to_dict(self) -> Dict[str, object]:
        """Convert to the formula input format (parse_formula accepts it back)."""
        return {
            "name": self.name,
            "url": self.url,
            "digest": self.digest,
            "homepage": self.homepage,
            "description": self.description,
            "version": self.version,
            "dependencies": list(self.dependencies),
            "buildSteps": [step.to_dict() for step in self.build_steps],
            "env": dict(self.env),
            "artifacts": dict(self.artifacts),
            "test": list(self.test_args),
        }


def formula_digest(formula: Formula) -> str:
    """
    SHA256 of the canonical JSON form of a formula.

    Two formulas with the same digest describe exactly the same install.
    """
    canonical = json.dumps(formula.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
