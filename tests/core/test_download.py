"""
Tests for the source archive fetcher.

Tests cover:
- Streaming download to the destination
- Immediate failure on client errors
- Retry with capped exponential backoff on transient errors
- Cleanup of partial files
- Progress formatting
"""

import pytest
import requests
import responses

from formulakit.core.download import DownloadProgress, Fetcher, format_progress
from formulakit.core.exceptions import FetchError, NetworkError, NotFoundError

URL = "https://example.com/scenery-0.1.0.tar.gz"


def make_fetcher(**kwargs):
    """Fetcher that records its backoff delays instead of sleeping."""
    delays = []
    fetcher = Fetcher(sleep=delays.append, **kwargs)
    return fetcher, delays


class TestFetcherInit:
    """Tests for Fetcher construction."""

    def test_rejects_zero_retries(self):
        with pytest.raises(ValueError, match="max_retries"):
            Fetcher(max_retries=0)

    def test_backoff_doubles_and_caps(self):
        fetcher = Fetcher(backoff_base=1.0, backoff_cap=5.0)
        assert [fetcher.backoff_delay(i) for i in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestFetch:
    """Tests for Fetcher.fetch."""

    @responses.activate
    def test_simple_fetch(self, tmp_path):
        """Test download writes the body to the destination."""
        content = b"archive bytes"
        responses.add(
            responses.GET,
            URL,
            body=content,
            status=200,
            headers={"content-length": str(len(content))},
        )
        fetcher, delays = make_fetcher()
        destination = tmp_path / "download" / "scenery.tar.gz"

        archive = fetcher.fetch(URL, destination)

        assert destination.read_bytes() == content
        assert archive.size_bytes == len(content)
        assert archive.attempts == 1
        assert delays == []

    def test_empty_url_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="needs a URL"):
            Fetcher().fetch("", tmp_path / "x")

    @responses.activate
    def test_not_found_is_not_retried(self, tmp_path):
        """Test a 404 fails immediately without retry."""
        responses.add(responses.GET, URL, status=404)
        fetcher, delays = make_fetcher(max_retries=3)
        destination = tmp_path / "scenery.tar.gz"

        with pytest.raises(NotFoundError) as exc_info:
            fetcher.fetch(URL, destination)

        assert exc_info.value.status_code == 404
        assert len(responses.calls) == 1
        assert delays == []
        assert not destination.exists()

    @responses.activate
    def test_server_errors_exhaust_retry_budget(self, tmp_path):
        """Test 5xx responses are retried up to max_retries, then fail."""
        responses.add(responses.GET, URL, status=503)
        fetcher, delays = make_fetcher(max_retries=3, backoff_base=1.0)

        with pytest.raises(NetworkError, match="after 3 attempts"):
            fetcher.fetch(URL, tmp_path / "scenery.tar.gz")

        assert len(responses.calls) == 3
        assert delays == [1.0, 2.0]

    @responses.activate
    def test_rate_limit_is_retried(self, tmp_path):
        """Test 429 is treated as transient."""
        responses.add(responses.GET, URL, status=429)
        responses.add(responses.GET, URL, body=b"ok", status=200)
        fetcher, delays = make_fetcher(max_retries=3)

        archive = fetcher.fetch(URL, tmp_path / "scenery.tar.gz")

        assert archive.attempts == 2
        assert len(delays) == 1

    @responses.activate
    def test_recovers_after_connection_error(self, tmp_path):
        """Test a connection error followed by success."""
        responses.add(
            responses.GET, URL, body=requests.exceptions.ConnectionError("reset")
        )
        responses.add(responses.GET, URL, body=b"second time lucky", status=200)
        fetcher, _ = make_fetcher(max_retries=2)
        destination = tmp_path / "scenery.tar.gz"

        archive = fetcher.fetch(URL, destination)

        assert archive.attempts == 2
        assert destination.read_bytes() == b"second time lucky"

    @responses.activate
    def test_partial_file_removed_after_failure(self, tmp_path):
        """Test no partial archive is left when every attempt fails."""
        responses.add(
            responses.GET, URL, body=requests.exceptions.ConnectionError("reset")
        )
        fetcher, _ = make_fetcher(max_retries=2)
        destination = tmp_path / "scenery.tar.gz"
        destination.write_bytes(b"stale")

        with pytest.raises(NetworkError) as exc_info:
            fetcher.fetch(URL, destination)

        assert isinstance(exc_info.value, FetchError)
        assert isinstance(exc_info.value.__cause__, requests.exceptions.ConnectionError)
        assert not destination.exists()

    @responses.activate
    def test_progress_callback_called(self, tmp_path):
        """Test progress is reported for a download of known size."""
        content = b"x" * 20000
        responses.add(
            responses.GET,
            URL,
            body=content,
            status=200,
            headers={"content-length": str(len(content))},
        )
        updates = []

        Fetcher().fetch(URL, tmp_path / "scenery.tar.gz", updates.append)

        assert updates
        assert updates[-1].bytes_downloaded == len(content)
        assert updates[-1].percentage == 100.0

    @responses.activate
    def test_uses_given_session(self, tmp_path):
        responses.add(responses.GET, URL, body=b"data", status=200)
        with requests.Session() as session:
            Fetcher(session=session).fetch(URL, tmp_path / "scenery.tar.gz")

        assert len(responses.calls) == 1


class TestFormatProgress:
    """Tests for progress formatting."""

    def test_known_size(self):
        progress = DownloadProgress(52428800, 104857600, 50.0, 1048576, 50)
        assert format_progress(progress) == "50.0/100.0 MB (50.0%) at 1.0 MB/s ETA: 50s"

    def test_unknown_size(self):
        progress = DownloadProgress(1048576, 1048576, 0, 1048576, 0)
        assert str(progress) == "1.0 MB at 1.0 MB/s"
