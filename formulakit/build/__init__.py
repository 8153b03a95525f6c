"""
Build stage: controlled environments and ordered step execution.
"""

from .environment import BuildEnvironment, dependency_env_var, expand_placeholders
from .runner import BuildResult, BuildRunner, StepResult, run_smoke_test

__all__ = [
    "BuildEnvironment",
    "dependency_env_var",
    "expand_placeholders",
    "BuildResult",
    "BuildRunner",
    "StepResult",
    "run_smoke_test",
]
