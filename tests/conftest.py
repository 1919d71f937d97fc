"""
pytest configuration for collector tests.

Adds src directory to Python path for imports and provides shared fixtures.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from core.logging import clear_log_context  # noqa: E402


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_log_context():
    yield
    clear_log_context()


def _make_response(status: int = 200, body: str | bytes = "[]"):
    """Mock aiohttp response usable as `async with session.post(...) as response`.

    body may be bytes to simulate payloads that are not valid UTF-8.
    """
    raw = body if isinstance(body, bytes) else body.encode("utf-8")
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=raw)
    response.text = AsyncMock(return_value=raw.decode("utf-8", errors="replace"))

    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=response)
    cm.__aexit__ = AsyncMock(return_value=None)
    return cm


def _make_session(*responses):
    """Mock ClientSession whose post() yields the given responses in order.

    An exception instance in responses is raised by post() instead.
    """
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()

    session.post = MagicMock(side_effect=list(responses))
    return session


@pytest.fixture
def make_response():
    return _make_response


@pytest.fixture
def make_session():
    return _make_session
