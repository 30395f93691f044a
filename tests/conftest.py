"""Shared fixtures for resilience-core tests."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CallCounter:
    """Async operation that replays a script of results and errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps(clock):
    """Record retry backoff sleeps instead of sleeping; advances the fake clock.

    Only the retry module's view of asyncio is replaced, so the event loop
    and the rate limiter keep the real sleep.
    """
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)
        clock.advance(delay)

    with patch("resilience_core.retry.asyncio", SimpleNamespace(sleep=fake_sleep)):
        yield recorded
