"""
Install manifests for FormulaKit.

A manifest records what one install run placed where: an ordered list of
(source, destination, digest) entries plus the digest of the formula that
produced them. Manifests are persisted to `<home>/manifests/<name>.json`
and are used to detect already-satisfied installs and to uninstall.

Example:
    >>> store = ManifestStore(home / "manifests")
    >>> manifest = store.load("scenery")
    >>> if manifest and manifest.formula_digest == formula_digest(formula):
    ...     print("already installed")
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from formulakit.core.exceptions import ManifestError
from formulakit.core.filesystem import atomic_write
from formulakit.core.verification import compute_file_hash

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1


@dataclass(frozen=True)
class ManifestEntry:
    """One installed artifact."""

    source: str
    """Path relative to the build directory"""

    destination: str
    """Absolute destination path"""

    digest: str
    """SHA256 of the installed file"""

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "source": self.source,
            "destination": self.destination,
            "digest": self.digest,
        }


@dataclass
class InstallManifest:
    """
    Record of one successful install.

    Attributes:
        name: Formula name
        formula_digest: Digest of the formula description that was installed
        archive_digest: Verified digest of the source archive
        installed_at: ISO 8601 timestamp
        entries: Installed artifacts, in install order
    """

    name: str
    formula_digest: str
    archive_digest: str = ""
    installed_at: str = field(default_factory=lambda: datetime.now().isoformat())
    entries: List[ManifestEntry] = field(default_factory=list)
    version: int = MANIFEST_VERSION

    def add(self, source: str, destination: Path, digest: str) -> ManifestEntry:
        """Append an entry and return it."""
        entry = ManifestEntry(source=source, destination=str(destination), digest=digest)
        self.entries.append(entry)
        return entry

    def destinations(self) -> List[Path]:
        return [Path(entry.destination) for entry in self.entries]

    def is_satisfied(self) -> bool:
        """
        Check that every recorded file is still present and unmodified.

        Reads files only; never writes.
        """
        for entry in self.entries:
            destination = Path(entry.destination)
            if not destination.is_file():
                logger.debug(f"Manifest entry missing: {destination}")
                return False
            if compute_file_hash(destination) != entry.digest:
                logger.debug(f"Manifest entry modified: {destination}")
                return False
        return True

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "version": self.version,
            "name": self.name,
            "formula_digest": self.formula_digest,
            "archive_digest": self.archive_digest,
            "installed_at": self.installed_at,
            "entries": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InstallManifest":
        """
        Build a manifest from its JSON form.

        Raises:
            ManifestError: If required fields are missing or malformed
        """
        try:
            entries = [
                ManifestEntry(
                    source=str(item["source"]),
                    destination=str(item["destination"]),
                    digest=str(item["digest"]),
                )
                for item in data.get("entries", [])
            ]
            return cls(
                name=str(data["name"]),
                formula_digest=str(data["formula_digest"]),
                archive_digest=str(data.get("archive_digest", "")),
                installed_at=str(data.get("installed_at", "")),
                entries=entries,
                version=int(data.get("version", MANIFEST_VERSION)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ManifestError(f"Invalid manifest data: {e}") from e


class ManifestStore:
    """
    One JSON manifest file per installed formula.

    Attributes:
        manifest_dir: Directory holding <name>.json files
    """

    def __init__(self, manifest_dir: Path):
        self.manifest_dir = Path(manifest_dir)

    def path_for(self, name: str) -> Path:
        safe_name = re.sub(r"[^A-Za-z0-9._+-]", "-", name)
        return self.manifest_dir / f"{safe_name}.json"

    def load(self, name: str) -> Optional[InstallManifest]:
        """
        Load the manifest for a formula.

        Returns:
            The manifest, or None when the formula has never been installed

        Raises:
            ManifestError: If the file exists but cannot be parsed
        """
        path = self.path_for(name)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise ManifestError(f"Failed to read manifest {path}: {e}") from e

        if not isinstance(data, dict):
            raise ManifestError(f"Invalid manifest format: {path}")

        manifest = InstallManifest.from_dict(data)
        if manifest.version != MANIFEST_VERSION:
            raise ManifestError(
                f"Unsupported manifest version {manifest.version} in {path}"
            )
        return manifest

    def save(self, manifest: InstallManifest) -> Path:
        """
        Persist a manifest atomically.

        Raises:
            ManifestError: If the file cannot be written
        """
        path = self.path_for(manifest.name)
        try:
            atomic_write(path, json.dumps(manifest.to_dict(), indent=2) + "\n")
        except OSError as e:
            raise ManifestError(f"Failed to save manifest {path}: {e}") from e

        logger.debug(f"Saved manifest for {manifest.name} ({len(manifest.entries)} entries)")
        return path

    def remove(self, name: str) -> bool:
        """Delete a manifest. Returns False if there was none."""
        path = self.path_for(name)
        if not path.exists():
            return False
        path.unlink()
        logger.debug(f"Removed manifest: {path}")
        return True

    def list(self) -> List[InstallManifest]:
        """All readable manifests, sorted by formula name."""
        if not self.manifest_dir.is_dir():
            return []

        manifests = []
        for path in sorted(self.manifest_dir.glob("*.json")):
            try:
                manifest = self.load(path.stem)
            except ManifestError as e:
                logger.warning(f"Skipping unreadable manifest: {e}")
                continue
            if manifest is not None:
                manifests.append(manifest)

        return sorted(manifests, key=lambda m: m.name)


__all__ = ["ManifestEntry", "InstallManifest", "ManifestStore", "MANIFEST_VERSION"]
