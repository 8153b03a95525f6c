"""
Install stage: staging areas, artifact installation and run orchestration.
"""

from .executor import (
    CancellationToken,
    cancel_on_interrupt,
    InstallExecutor,
    InstallOutcome,
    InstallState,
    Planner,
)
from .installer import Installer
from .staging import StagingContext

__all__ = [
    "CancellationToken",
    "cancel_on_interrupt",
    "InstallExecutor",
    "InstallOutcome",
    "InstallState",
    "Planner",
    "Installer",
    "StagingContext",
]
