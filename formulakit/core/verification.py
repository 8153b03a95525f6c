"""
Archive digest verification.

Digests are computed by streaming the file in fixed-size chunks, so memory
use is constant regardless of archive size. Comparison is exact (after
case folding) and timing-attack resistant. A mismatch is always fatal.
"""

import hashlib
import logging
import re
import secrets
from pathlib import Path
from typing import Callable, Optional, Union

from formulakit.core.exceptions import DigestMismatchError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536

_HEX_LENGTHS = {"sha256": 64, "sha512": 128}


def compute_file_hash(
    file_path: Union[str, Path],
    algorithm: str = "sha256",
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> str:
    """
    Compute cryptographic hash of file.

    Args:
        file_path: Path to file
        algorithm: Hash algorithm ('sha256', 'sha512')
        progress_callback: Optional progress callback (bytes_read, total_bytes)

    Returns:
        Lower-case hex digest

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If algorithm is not supported

    Example:
        >>> compute_file_hash(Path('scenery-0.1.0.tar.gz'))
        '773372ac325ae746b95f0d503b08461bfa039bf9a0be6a3db2805aec69b61f74'
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    algorithm = algorithm.lower()
    if algorithm not in _HEX_LENGTHS:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    file_size = file_path.stat().st_size
    bytes_read = 0

    with open(file_path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            hasher.update(chunk)
            bytes_read += len(chunk)
            if progress_callback:
                progress_callback(bytes_read, file_size)

    return hasher.hexdigest()


def normalize_digest(digest: str) -> str:
    """Strip whitespace and an optional 'sha256:' prefix, lower-case the rest."""
    digest = digest.strip().lower()
    if digest.startswith("sha256:"):
        digest = digest[len("sha256:") :]
    return digest


def is_valid_digest(digest: str, algorithm: str = "sha256") -> bool:
    """Check that digest is a hex string of the right length for algorithm."""
    expected_length = _HEX_LENGTHS.get(algorithm.lower())
    if expected_length is None:
        return False
    return bool(re.fullmatch(rf"[0-9a-f]{{{expected_length}}}", digest.lower()))


def digests_match(actual: str, expected: str) -> bool:
    """Case-insensitive constant-time digest comparison."""
    return secrets.compare_digest(
        normalize_digest(actual).encode("ascii", "replace"),
        normalize_digest(expected).encode("ascii", "replace"),
    )


class Verifier:
    """
    Verifies fetched archives against their expected digest.

    Example:
        >>> Verifier().verify(Path('scenery-0.1.0.tar.gz'), formula.digest)
    """

    def __init__(self, algorithm: str = "sha256"):
        self.algorithm = algorithm.lower()
        if self.algorithm not in _HEX_LENGTHS:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    def verify(self, archive_path: Path, expected_digest: str) -> str:
        """
        Verify archive_path matches expected_digest.

        Args:
            archive_path: File to check
            expected_digest: Expected hex digest (any case)

        Returns:
            The computed digest

        Raises:
            DigestMismatchError: If the digests differ (or expected is malformed)
            FileNotFoundError: If the archive does not exist
        """
        actual = compute_file_hash(archive_path, self.algorithm)

        if not digests_match(actual, expected_digest):
            logger.error(
                f"Digest mismatch for {Path(archive_path).name}: "
                f"expected {expected_digest}, got {actual}"
            )
            raise DigestMismatchError(archive_path, expected_digest, actual)

        logger.info(f"Verified {self.algorithm} digest of {Path(archive_path).name}")
        return actual


__all__ = [
    "compute_file_hash",
    "normalize_digest",
    "is_valid_digest",
    "digests_match",
    "Verifier",
]
