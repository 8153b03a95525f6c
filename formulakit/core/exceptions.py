"""
Centralized exception hierarchy for FormulaKit.

Every component raises one of these and lets it propagate to the executor,
which is the only place that decides to abort a run and clean up.
"""

from pathlib import Path
from typing import Optional, Sequence


# ============================================================================
# Base Exceptions
# ============================================================================


class FormulaKitError(Exception):
    """Base exception for all FormulaKit errors."""

    pass


class ConfigError(FormulaKitError):
    """Configuration parsing or validation error."""

    pass


# ============================================================================
# Formula Exceptions
# ============================================================================


class FormulaError(FormulaKitError):
    """Raised when a formula description is malformed."""

    pass


class FormulaNotFoundError(FormulaError):
    """Raised when no formula with the requested name is known."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Formula not found: {name}")


# ============================================================================
# Fetch Exceptions
# ============================================================================


class FetchError(FormulaKitError):
    """Base exception for source archive retrieval errors."""

    pass


class NetworkError(FetchError):
    """Transient network failure; fatal once the retry budget is spent."""

    pass


class NotFoundError(FetchError):
    """Client-side HTTP error (4xx). Never retried."""

    def __init__(self, url: str, status_code: int):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Resource not available ({status_code}): {url}")


# ============================================================================
# Verification Exceptions
# ============================================================================


class DigestMismatchError(FormulaKitError):
    """Raised when an archive does not match its expected digest."""

    def __init__(self, path: Path, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Digest mismatch for {Path(path).name}: "
            f"expected {expected}, got {actual}"
        )


class ArchiveExtractionError(FormulaKitError):
    """Failed to extract an archive."""

    pass


class UnsupportedArchiveFormat(ArchiveExtractionError):
    """Archive format is not supported."""

    pass


class InsecureArchiveError(ArchiveExtractionError):
    """Archive contains insecure paths (directory traversal attempt)."""

    pass


# ============================================================================
# Build Exceptions
# ============================================================================


class BuildError(FormulaKitError):
    """Base exception for build stage errors."""

    pass


class BuildStepError(BuildError):
    """Raised when a build step exits non-zero, cannot start or times out."""

    def __init__(
        self,
        index: int,
        exit_status: Optional[int],
        output: str,
        argv: Sequence[str] = (),
    ):
        self.index = index
        self.exit_status = exit_status
        self.output = output
        self.argv = list(argv)

        if exit_status is None:
            reason = "timed out"
        else:
            reason = f"exited with status {exit_status}"
        command = " ".join(self.argv) if self.argv else "<unknown>"
        super().__init__(f"Build step {index} ({command}) {reason}")


class MissingDependencyError(BuildError):
    """Raised when a declared build-time dependency cannot be located."""

    def __init__(self, dependency: str, env_var: str):
        self.dependency = dependency
        self.env_var = env_var
        super().__init__(
            f"Build dependency '{dependency}' not found. "
            f"Install it or set {env_var} to its installation root."
        )


class MissingArtifactError(BuildError):
    """Raised when the build did not produce a declared artifact."""

    def __init__(self, source: str, work_dir: Path):
        self.source = source
        self.work_dir = work_dir
        super().__init__(f"Build did not produce artifact '{source}' in {work_dir}")


class SmokeTestError(BuildError):
    """Raised when an installed executable fails its smoke test."""

    pass


# ============================================================================
# Install Exceptions
# ============================================================================


class InstallError(FormulaKitError):
    """Raised when an artifact cannot be placed at its destination."""

    def __init__(self, destination: Path, message: str):
        self.destination = destination
        super().__init__(f"{message}: {destination}")


class InstallPermissionError(InstallError):
    """Raised when the destination is not writable."""

    pass


class ManifestError(FormulaKitError):
    """Raised when an install manifest cannot be read or written."""

    pass


class ManifestNotFoundError(ManifestError):
    """Raised when a formula has no install manifest."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Formula is not installed: {name}")


# ============================================================================
# Run Control Exceptions
# ============================================================================


class InstallLockTimeout(FormulaKitError):
    """Raised when the per-formula lock cannot be acquired in time."""

    pass


class InstallCancelled(FormulaKitError):
    """Raised between stages when a run has been cancelled."""

    pass
