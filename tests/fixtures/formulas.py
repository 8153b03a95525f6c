"""Reusable formula and source archive fixtures for testing.

The fixture archive mimics a real source tarball: everything sits under a
single top-level directory (scenery-0.1.0/) and the build is a Python
script, so tests can run real build steps without a compiler.
"""

import hashlib
import io
import sys
import tarfile
from pathlib import Path
from typing import Dict, Optional

import pytest

from formulakit.formula.parser import parse_formula

SCENERY_URL = "https://example.com/dmlittle/scenery/archive/v0.1.0.tar.gz"

BUILD_SCRIPT = '''\
import os
import sys
import time

trace = os.environ.get("TRACE_DIR")
if trace:
    marker = os.path.join(trace, "building")
    try:
        fd = os.open(marker, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        sys.exit(3)
    os.close(fd)
    time.sleep(0.3)
    os.remove(marker)
    with open(os.path.join(trace, "builds"), "a") as f:
        f.write("x")

with open("scenery", "w") as f:
    f.write("#!" + sys.executable + "\\n")
    f.write("print('scenery 0.1.0')\\n")
os.chmod("scenery", 0o755)
'''


def build_source_archive(
    top_dir: str = "scenery-0.1.0", files: Optional[Dict[str, str]] = None
) -> bytes:
    """
    Create a gzipped tar archive in memory.

    Args:
        top_dir: Name of the single top-level directory
        files: Relative path -> text content (default: build.py and README.md)

    Returns:
        Archive bytes
    """
    if files is None:
        files = {"build.py": BUILD_SCRIPT, "README.md": "scenery\n"}

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for relative, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{top_dir}/{relative}")
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def make_formula_data(digest: str, **overrides) -> dict:
    """Formula description for the scenery fixture archive."""
    data = {
        "name": "scenery",
        "url": SCENERY_URL,
        "digest": digest,
        "homepage": "https://github.com/dmlittle/scenery",
        "version": "0.1.0",
        "dependencies": [],
        "buildSteps": [[sys.executable, "build.py"]],
        "artifacts": {"scenery": "bin/scenery"},
        "test": ["--version"],
    }
    data.update(overrides)
    return data


@pytest.fixture
def scenery_archive() -> bytes:
    """
    Source archive of the scenery fixture project.

    Example:
        def test_fetch(scenery_archive):
            responses.add(responses.GET, SCENERY_URL, body=scenery_archive)
    """
    return build_source_archive()


@pytest.fixture
def scenery_digest(scenery_archive) -> str:
    """SHA256 of the scenery fixture archive."""
    return hashlib.sha256(scenery_archive).hexdigest()


@pytest.fixture
def scenery_formula(scenery_digest):
    """Parsed scenery formula whose digest matches the fixture archive."""
    return parse_formula(make_formula_data(scenery_digest))


@pytest.fixture
def formulakit_home(tmp_path, monkeypatch) -> Path:
    """
    Isolated FormulaKit home directory.

    Sets FORMULAKIT_HOME so code that falls back to the default home never
    touches the real ~/.formulakit.
    """
    home = tmp_path / "fkhome"
    home.mkdir()
    monkeypatch.setenv("FORMULAKIT_HOME", str(home))
    return home


def interrupting_step(marker: Path) -> list:
    """
    Build step that sends Ctrl-C (SIGINT) to the process running the build,
    keeps working for a moment, then writes marker. The marker exists only
    if the step was allowed to finish.
    """
    script = (
        "import os, pathlib, signal, time\n"
        "os.kill(os.getppid(), signal.SIGINT)\n"
        "time.sleep(1.0)\n"
        f"pathlib.Path({str(marker)!r}).write_text('finished')\n"
    )
    return [sys.executable, "-c", script]
