"""
Core functionality for FormulaKit.

This package contains the foundational modules the install pipeline
depends on: fetching, verification, locking, manifests and file utilities.
"""

from .directory import get_home_dir, get_layout, DirectoryError

from .download import Fetcher, FetchedArchive, DownloadProgress, format_progress

from .verification import Verifier, compute_file_hash

from .locking import LockManager

from .manifest import InstallManifest, ManifestEntry, ManifestStore

from .exceptions import (
    FormulaKitError,
    ConfigError,
    FormulaError,
    FormulaNotFoundError,
    FetchError,
    NetworkError,
    NotFoundError,
    DigestMismatchError,
    ArchiveExtractionError,
    UnsupportedArchiveFormat,
    InsecureArchiveError,
    BuildError,
    BuildStepError,
    MissingDependencyError,
    MissingArtifactError,
    SmokeTestError,
    InstallError,
    InstallPermissionError,
    ManifestError,
    ManifestNotFoundError,
    InstallLockTimeout,
    InstallCancelled,
)

__all__ = [
    "get_home_dir",
    "get_layout",
    "DirectoryError",
    "Fetcher",
    "FetchedArchive",
    "DownloadProgress",
    "format_progress",
    "Verifier",
    "compute_file_hash",
    "LockManager",
    "InstallManifest",
    "ManifestEntry",
    "ManifestStore",
    "FormulaKitError",
    "ConfigError",
    "FormulaError",
    "FormulaNotFoundError",
    "FetchError",
    "NetworkError",
    "NotFoundError",
    "DigestMismatchError",
    "ArchiveExtractionError",
    "UnsupportedArchiveFormat",
    "InsecureArchiveError",
    "BuildError",
    "BuildStepError",
    "MissingDependencyError",
    "MissingArtifactError",
    "SmokeTestError",
    "InstallError",
    "InstallPermissionError",
    "ManifestError",
    "ManifestNotFoundError",
    "InstallLockTimeout",
    "InstallCancelled",
]
