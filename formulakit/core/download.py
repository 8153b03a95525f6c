"""
Source archive fetcher.

Downloads are streamed to disk over verified TLS. Transient failures
(connection errors, timeouts, 5xx, 408 and 429) are retried with capped
exponential backoff; any other 4xx fails at once.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import requests
from requests.exceptions import ConnectionError, HTTPError, RequestException, Timeout

from formulakit.core.exceptions import NetworkError, NotFoundError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192

# Client errors that are really "try again later"
RETRYABLE_CLIENT_STATUS = (408, 429)

# Minimum seconds between two progress reports
PROGRESS_INTERVAL = 0.5

MIB = 1024 * 1024


@dataclass
class DownloadProgress:
    """Snapshot of a running download."""

    bytes_downloaded: int
    total_bytes: int
    percentage: float
    speed_bps: float
    eta_seconds: float

    @classmethod
    def measure(cls, downloaded: int, expected: int, elapsed: float) -> "DownloadProgress":
        """Build a snapshot; expected is 0 when the server sent no length."""
        speed = downloaded / elapsed if elapsed > 0 else 0.0
        if not expected:
            return cls(downloaded, downloaded, 0.0, speed, 0.0)
        eta = (expected - downloaded) / speed if speed > 0 else 0.0
        return cls(downloaded, expected, downloaded / expected * 100, speed, eta)

    def __str__(self) -> str:
        return format_progress(self)


ProgressCallback = Callable[[DownloadProgress], None]


class _ProgressReporter:
    """Throttles progress callbacks to one per PROGRESS_INTERVAL, plus the final one."""

    def __init__(self, callback: Optional[ProgressCallback], expected: int):
        self.callback = callback
        self.expected = expected
        self.started = time.time()
        self.last_report = self.started

    def update(self, downloaded: int) -> None:
        if self.callback is None:
            return
        now = time.time()
        if now - self.last_report < PROGRESS_INTERVAL and downloaded != self.expected:
            return
        self.last_report = now
        self.callback(DownloadProgress.measure(downloaded, self.expected, now - self.started))


@dataclass
class FetchedArchive:
    """A source archive written to local disk."""

    url: str
    path: Path
    size_bytes: int
    attempts: int


class Fetcher:
    """
    Retrieves source archives into a staging path.

    Example:
        >>> fetcher = Fetcher(timeout=30, max_retries=3)
        >>> archive = fetcher.fetch(
        ...     "https://github.com/dmlittle/scenery/archive/v0.1.0.tar.gz",
        ...     Path("staging/scenery/v0.1.0.tar.gz"),
        ... )
        >>> archive.size_bytes
        10240
    """

    def __init__(
        self,
        timeout: float = 30,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize fetcher.

        Args:
            timeout: Per-request connect/read timeout in seconds
            max_retries: Maximum number of attempts (>= 1)
            backoff_base: Delay before the second attempt, doubled each retry
            backoff_cap: Upper bound on any single delay
            session: Optional requests session (default: a new one per fetch)
            sleep: Sleep function, replaceable in tests
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.session = session
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        return min(self.backoff_base * (2**attempt), self.backoff_cap)

    def fetch(
        self,
        url: str,
        destination: Path,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> FetchedArchive:
        """
        Download url to destination, retrying transient failures.

        Args:
            url: URL to download from
            destination: Local file to write (overwritten on every attempt)
            progress_callback: Optional callback for progress updates

        Returns:
            FetchedArchive describing the written file

        Raises:
            NotFoundError: On a 4xx response (not retried)
            NetworkError: If every attempt failed with a transient error
            ValueError: If URL or destination is empty
        """
        if not url:
            raise ValueError("fetch() needs a URL")
        if not destination:
            raise ValueError("fetch() needs a destination path")

        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                size = self._download_once(url, destination, progress_callback)
                logger.info(f"Fetched {url} ({size} bytes)")
                return FetchedArchive(
                    url=url, path=destination, size_bytes=size, attempts=attempt + 1
                )
            except NotFoundError:
                destination.unlink(missing_ok=True)
                raise
            except (Timeout, ConnectionError, HTTPError, RequestException) as e:
                last_error = e

            if attempt < self.max_retries - 1:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Fetch attempt {attempt + 1} failed: {last_error}. "
                    f"Retrying in {delay:.1f}s..."
                )
                self._sleep(delay)

        destination.unlink(missing_ok=True)
        raise NetworkError(
            f"Fetch of {url} failed after {self.max_retries} attempts: {last_error}"
        ) from last_error


    def _download_once(
        self,
        url: str,
        destination: Path,
        progress_callback: Optional[ProgressCallback],
    ) -> int:
        """
        Stream url into destination once and return the byte count.

        Raises:
            NotFoundError: On a non-retryable client error
            RequestException: On any transient failure, including a short body
        """
        logger.debug(f"Requesting {url}")
        getter = self.session.get if self.session is not None else requests.get

        with getter(url, stream=True, timeout=self.timeout, allow_redirects=True) as response:
            status = response.status_code
            if 400 <= status < 500 and status not in RETRYABLE_CLIENT_STATUS:
                raise NotFoundError(url, status)
            response.raise_for_status()

            expected = int(response.headers.get("content-length") or 0)
            reporter = _ProgressReporter(progress_callback, expected)
            written = 0

            # "wb" truncates whatever a previous failed attempt left behind
            with open(destination, "wb") as out:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        out.write(chunk)
                        written += len(chunk)
                        reporter.update(written)

        if expected and written != expected:
            raise ConnectionError(f"Incomplete download: got {written} of {expected} bytes")

        return written


def format_progress(progress: DownloadProgress) -> str:
    """
    Render progress in MB, e.g. "50.0/100.0 MB (50.0%) at 1.0 MB/s ETA: 50s".

    Without a known total only the amount and speed are shown.
    """
    done = progress.bytes_downloaded / MIB
    rate = f"{progress.speed_bps / MIB:.1f} MB/s"

    if progress.total_bytes <= 0 or progress.percentage <= 0:
        return f"{done:.1f} MB at {rate}"
    return (
        f"{done:.1f}/{progress.total_bytes / MIB:.1f} MB ({progress.percentage:.1f}%) "
        f"at {rate} ETA: {progress.eta_seconds:.0f}s"
    )


__all__ = [
    "DownloadProgress",
    "FetchedArchive",
    "Fetcher",
    "format_progress",
]
