"""
Unit test specific fixtures.

These fixtures are only available to unit tests.
"""

import pytest

from creative_export.core.cache import TTLCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ttl_cache(clock):
    """Cache on a manual clock with a 60 second default TTL."""
    return TTLCache(default_ttl_seconds=60, clock=clock)
