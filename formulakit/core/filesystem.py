"""
File system helpers for the install pipeline.

- Source archive unpacking with member path checks
- Atomic file replacement for manifests
- Directory removal confined to a known parent
"""

import logging
import os
import shutil
import sys
import tarfile
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Tuple, Union

from formulakit.core.exceptions import (
    ArchiveExtractionError,
    InsecureArchiveError,
    UnsupportedArchiveFormat,
)

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"

# Longest suffix first so ".tar.gz" wins over ".tar"
ARCHIVE_FORMATS: Tuple[Tuple[str, str], ...] = (
    (".tar.gz", "r:gz"),
    (".tar.xz", "r:xz"),
    (".tar.bz2", "r:bz2"),
    (".tgz", "r:gz"),
    (".tbz2", "r:bz2"),
    (".tar", "r:"),
    (".zip", "zip"),
)

SUPPORTED_ARCHIVES = tuple(suffix for suffix, _ in ARCHIVE_FORMATS)

ProgressCallback = Callable[[int, int], None]


def is_relative_to(path: Path, parent: Path) -> bool:
    """True if path equals parent or lies below it (purely lexical)."""
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


def archive_mode(archive_name: str) -> str:
    """
    Open mode for an archive, chosen by file name.

    Returns:
        A tarfile mode such as 'r:gz', or 'zip'

    Raises:
        UnsupportedArchiveFormat: If the suffix is not recognized
    """
    lowered = archive_name.lower()
    for suffix, mode in ARCHIVE_FORMATS:
        if lowered.endswith(suffix):
            return mode
    raise UnsupportedArchiveFormat(
        f"Cannot unpack {archive_name}: expected one of {', '.join(SUPPORTED_ARCHIVES)}"
    )


def _ensure_inside(member_name: str, root: Path) -> None:
    """Reject members that would land outside root once joined and resolved."""
    if PurePosixPath(member_name).is_absolute() or not is_relative_to(
        (root / member_name).resolve(), root.resolve()
    ):
        raise InsecureArchiveError(
            f"Refusing to unpack '{member_name}': it points outside {root}"
        )


def extract_archive(
    archive_path: Union[str, Path],
    destination: Union[str, Path],
    progress_callback: Optional[ProgressCallback] = None,
) -> None:
    """
    Unpack a source archive into destination.

    Every member (and every link target in tar archives) is checked before
    anything is written, so a hostile archive leaves destination untouched.

    Args:
        archive_path: tar.gz, tgz, tar.xz, tar.bz2, tbz2, tar or zip file
        destination: Directory to unpack into (created if needed)
        progress_callback: Optional callback(members_done, members_total)

    Raises:
        UnsupportedArchiveFormat: Unknown suffix
        InsecureArchiveError: A member would escape destination
        ArchiveExtractionError: Missing, truncated or corrupt archive
    """
    archive_path = Path(archive_path)
    destination = Path(destination)

    if not archive_path.is_file():
        raise ArchiveExtractionError(f"Archive not found: {archive_path}")

    mode = archive_mode(archive_path.name)
    destination.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Unpacking {archive_path.name} into {destination}")

    try:
        if mode == "zip":
            _unpack_zip(archive_path, destination, progress_callback)
        else:
            _unpack_tar(archive_path, destination, mode, progress_callback)
    except ArchiveExtractionError:
        raise
    except (OSError, EOFError, tarfile.TarError, zipfile.BadZipFile) as e:
        raise ArchiveExtractionError(f"Cannot unpack {archive_path.name}: {e}") from e


def _unpack_zip(
    archive_path: Path, destination: Path, progress_callback: Optional[ProgressCallback]
) -> None:
    with zipfile.ZipFile(archive_path) as archive:
        members = archive.infolist()
        for member in members:
            _ensure_inside(member.filename, destination)

        for done, member in enumerate(members, start=1):
            target = Path(archive.extract(member, destination))
            # zipfile drops Unix permissions; build scripts need their x bit
            permissions = (member.external_attr >> 16) & 0o777
            if permissions and not member.is_dir():
                target.chmod(permissions)
            if progress_callback:
                progress_callback(done, len(members))


def _unpack_tar(
    archive_path: Path,
    destination: Path,
    mode: str,
    progress_callback: Optional[ProgressCallback],
) -> None:
    with tarfile.open(archive_path, mode) as archive:
        members = archive.getmembers()
        for member in members:
            _ensure_inside(member.name, destination)
            if member.issym():
                link_base = PurePosixPath(member.name).parent
                _ensure_inside(str(link_base / member.linkname), destination)
            elif member.islnk():
                _ensure_inside(member.linkname, destination)

        if sys.version_info >= (3, 12):
            archive.extractall(destination, filter="data")
        else:
            archive.extractall(destination)

        if progress_callback:
            progress_callback(len(members), len(members))


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Replace file_path with content in one rename.

    Readers see either the old file or the complete new one. The data is
    flushed to disk before the rename.

    Example:
        >>> atomic_write(home / 'manifests' / 'scenery.json', '{"name": "scenery"}')
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    fd, scratch_name = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".part"
    )
    scratch = Path(scratch_name)
    data = content.encode(encoding) if isinstance(content, str) else content

    try:
        with open(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(scratch, file_path)
    except BaseException:
        scratch.unlink(missing_ok=True)
        raise


def safe_rmtree(
    path: Union[str, Path], require_prefix: Optional[Union[str, Path]] = None
) -> None:
    """
    Delete a directory tree that must live strictly below require_prefix.

    Missing paths are ignored. On Windows, read-only files are made
    writable and retried.

    Raises:
        ValueError: If path is require_prefix itself or lies outside it
        OSError: If deletion fails

    Example:
        >>> safe_rmtree(staging / 'scenery', require_prefix=staging)
    """
    path = Path(path).resolve()

    if require_prefix is not None:
        parent = Path(require_prefix).resolve()
        if path == parent or not is_relative_to(path, parent):
            raise ValueError(f"Refusing to delete '{path}': not below '{parent}'")

    if not path.exists():
        return

    if not IS_WINDOWS:
        shutil.rmtree(path)
        return

    def clear_readonly(func, target, exc_info):
        if os.access(target, os.W_OK):
            raise exc_info[1]
        os.chmod(target, 0o700)
        func(target)

    shutil.rmtree(path, onerror=clear_readonly)


__all__ = [
    "ARCHIVE_FORMATS",
    "SUPPORTED_ARCHIVES",
    "archive_mode",
    "atomic_write",
    "extract_archive",
    "is_relative_to",
    "safe_rmtree",
]
