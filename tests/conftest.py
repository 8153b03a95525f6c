"""
Pytest configuration and shared fixtures for FormulaKit tests.
"""

import logging

import pytest

# Import test fixtures to make them available to all tests
# These imports register the fixtures with pytest's fixture discovery system
# ruff: noqa: F401
from tests.fixtures.formulas import (
    formulakit_home,
    scenery_archive,
    scenery_digest,
    scenery_formula,
)


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture
def no_network(monkeypatch):
    """Disable network access for tests."""
    import socket

    def guard(*args, **kwargs):
        raise RuntimeError("Network access not allowed in this test")

    monkeypatch.setattr(socket, "socket", guard)


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo the CLI's logging.basicConfig between tests."""
    root = logging.getLogger()
    level = root.level
    handlers = root.handlers[:]

    yield

    root.setLevel(level)
    root.handlers[:] = handlers
