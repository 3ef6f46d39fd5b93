"""
Unit tests for the retry helper.

Tests async retry logic with exponential backoff.
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Add server directory to path
server_path = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_path))

from app.utils import retry as retry_module
from app.utils.retry import RetryError, with_retry


class Flaky:
    """Async callable that fails a fixed number of times, then succeeds."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"Attempt {self.calls} failed")
        return "success"


@pytest.fixture
def sleeps(monkeypatch):
    """Record backoff delays instead of sleeping."""
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(retry_module.asyncio, "sleep", fake_sleep)
    return delays


def test_with_retry_succeeds_immediately(sleeps):
    """Test with_retry with immediately successful function."""
    func = Flaky(0)

    assert asyncio.run(with_retry(func, max_retries=3)) == "success"
    assert func.calls == 1
    assert sleeps == []


def test_with_retry_succeeds_after_failures(sleeps):
    """Test with_retry succeeds after initial failures."""
    func = Flaky(2)

    assert asyncio.run(with_retry(func, max_retries=3)) == "success"
    assert func.calls == 3


def test_with_retry_exhausts_retries(sleeps):
    """Test with_retry raises RetryError after exhausting retries."""
    func = Flaky(10)

    with pytest.raises(RetryError, match="Redis connection failed after 3 attempts") as excinfo:
        asyncio.run(with_retry(func, max_retries=3, operation_name="Redis connection"))

    assert func.calls == 3
    assert isinstance(excinfo.value.__cause__, ConnectionError)
    # No sleep after the final attempt
    assert len(sleeps) == 2


def test_with_retry_exponential_backoff(sleeps):
    """Delays grow by backoff_factor: 1.0s, 1.5s."""
    asyncio.run(with_retry(Flaky(2), max_retries=3, initial_delay=1.0, backoff_factor=1.5))

    assert sleeps == pytest.approx([1.0, 1.5])


def test_with_retry_respects_max_delay(sleeps):
    """Delays would be 1.0, 3.0, 9.0 but are capped at max_delay."""
    asyncio.run(
        with_retry(Flaky(3), max_retries=4, initial_delay=1.0, backoff_factor=3.0, max_delay=2.0)
    )

    assert sleeps == pytest.approx([1.0, 2.0, 2.0])
