"""Pytest configuration for stdio-rpc tests.

Key Principles:
- Transport and session tests run against an in-memory FakePeer
- Integration tests spawn tests/fixtures/fake_server.py with sys.executable
- Settings are constructed explicitly; the global instance is reset per test
"""

import sys
from pathlib import Path

import pytest

# tests directory (for fixtures.*)
tests_root = Path(__file__).parent
if str(tests_root) not in sys.path:
    sys.path.insert(0, str(tests_root))

from stdio_rpc.settings import reset_settings  # noqa: E402

FAKE_SERVER = str(tests_root / "fixtures" / "fake_server.py")


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def fake_server_command():
    """argv for a real child process speaking the protocol."""
    return [sys.executable, FAKE_SERVER]


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (in-memory peer)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests spawning a child process"
    )
