"""
Artifact installation with all-or-nothing semantics.

Every artifact is copied into a temporary file next to its destination and
renamed into place, so a destination is never half-written. If any artifact
fails, everything this call already placed is rolled back: new files are
removed and overwritten files are restored from backup copies.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Tuple

from formulakit.core.exceptions import InstallError, InstallPermissionError
from formulakit.core.filesystem import is_relative_to
from formulakit.core.manifest import InstallManifest, ManifestEntry
from formulakit.core.verification import compute_file_hash

logger = logging.getLogger(__name__)


class Installer:
    """
    Copies build artifacts into the install prefix.

    Example:
        >>> installer = Installer(prefix, backup_dir=staging.backup_dir)
        >>> manifest = installer.install(
        ...     {"scenery": "bin/scenery"}, staging.source_dir, "scenery", digest
        ... )
    """

    def __init__(self, prefix: Path, backup_dir: Optional[Path] = None):
        """
        Initialize installer.

        Args:
            prefix: Install prefix; destinations are relative to it
            backup_dir: Where overwritten files are saved until commit
                (default: a temporary directory)
        """
        self.prefix = Path(prefix)
        self.backup_dir = Path(backup_dir) if backup_dir is not None else None

    def destination_for(self, relative: str) -> Path:
        """
        Absolute destination of a prefix-relative path.

        Raises:
            InstallError: If the path would land outside the prefix
        """
        destination = self.prefix / relative
        if not is_relative_to(destination.resolve(), self.prefix.resolve()):
            raise InstallError(destination, "Destination escapes install prefix")
        return destination

    def install(
        self,
        artifacts: Mapping[str, str],
        source_dir: Path,
        name: str,
        formula_digest: str,
        commit: Optional[Callable[[InstallManifest], None]] = None,
    ) -> InstallManifest:
        """
        Install artifacts and build their manifest.

        Args:
            artifacts: Build-relative source -> prefix-relative destination
            source_dir: Build directory holding the sources
            name: Formula name recorded in the manifest
            formula_digest: Formula digest recorded in the manifest
            commit: Called with the finished manifest before backups are
                discarded; if it raises, the install is rolled back

        Returns:
            Manifest with one entry per artifact (skipped ones included)

        Raises:
            InstallPermissionError: If a destination is not writable
            InstallError: If any other file operation fails
        """
        manifest = InstallManifest(name=name, formula_digest=formula_digest)
        written: List[Tuple[Path, Optional[Path]]] = []
        backup_root = self.backup_dir or Path(tempfile.mkdtemp(prefix="formulakit_backup_"))
        destination = self.prefix

        try:
            for index, (source_rel, dest_rel) in enumerate(artifacts.items()):
                source = Path(source_dir) / source_rel
                destination = self.destination_for(dest_rel)
                digest = compute_file_hash(source)

                if destination.is_file() and compute_file_hash(destination) == digest:
                    logger.info(f"Up to date, skipping: {destination}")
                    manifest.add(source_rel, destination, digest)
                    continue

                backup = None
                if destination.exists():
                    backup_root.mkdir(parents=True, exist_ok=True)
                    backup = backup_root / f"{index}-{destination.name}"
                    shutil.copy2(destination, backup)

                written.append((destination, backup))
                self._atomic_copy(source, destination)
                manifest.add(source_rel, destination, digest)
                logger.info(f"Installed {source_rel} -> {destination}")

            if commit is not None:
                commit(manifest)

        except InstallError:
            self._rollback(written)
            raise
        except PermissionError as e:
            self._rollback(written)
            raise InstallPermissionError(destination, f"Permission denied: {e}") from e
        except Exception as e:
            self._rollback(written)
            if isinstance(e, OSError):
                raise InstallError(destination, f"Cannot install file: {e}") from e
            raise
        finally:
            if self.backup_dir is None:
                shutil.rmtree(backup_root, ignore_errors=True)

        return manifest

    def _atomic_copy(self, source: Path, destination: Path) -> None:
        """Copy source to destination via a sibling temp file and rename."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path_str = tempfile.mkstemp(
            dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp"
        )
        temp_path = Path(temp_path_str)

        try:
            with open(temp_fd, "wb") as out, open(source, "rb") as inp:
                shutil.copyfileobj(inp, out)
            shutil.copymode(source, temp_path)
            os.replace(temp_path, destination)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

    def _rollback(self, written: List[Tuple[Path, Optional[Path]]]) -> None:
        """Undo this call's writes, newest first. Failures are only logged."""
        for destination, backup in reversed(written):
            try:
                if backup is not None and backup.exists():
                    self._atomic_copy(backup, destination)
                    logger.info(f"Restored previous file: {destination}")
                else:
                    destination.unlink(missing_ok=True)
                    logger.info(f"Rolled back: {destination}")
            except OSError as e:
                logger.warning(f"Rollback failed for {destination}: {e}")

    def uninstall(self, entries: List[ManifestEntry]) -> List[Path]:
        """
        Remove installed files.

        Files that changed since install are left in place. Directories
        emptied by the removal are pruned up to the prefix.

        Returns:
            Paths that were removed

        Raises:
            InstallPermissionError: If a file cannot be removed for lack of rights
            InstallError: If a file cannot be removed for another reason
        """
        removed = []
        for entry in entries:
            destination = Path(entry.destination)
            if not destination.is_file():
                logger.debug(f"Already absent: {destination}")
                continue

            if compute_file_hash(destination) != entry.digest:
                logger.warning(f"Modified since install, leaving in place: {destination}")
                continue

            try:
                destination.unlink()
            except PermissionError as e:
                raise InstallPermissionError(destination, f"Permission denied: {e}") from e
            except OSError as e:
                raise InstallError(destination, f"Cannot remove file: {e}") from e

            removed.append(destination)
            logger.info(f"Removed {destination}")
            self._prune_empty_parents(destination.parent)

        return removed

    def _prune_empty_parents(self, directory: Path) -> None:
        prefix = self.prefix.resolve()
        directory = directory.resolve()
        while directory != prefix and is_relative_to(directory, prefix):
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent
