"""Shared fixtures for the appcache test suite."""

import pytest

from appcache.cache import CacheManager


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    manager = CacheManager(max_size=100, default_ttl=1000, cleanup_interval=60, clock=clock, autostart=False)
    yield manager
    manager.destroy()
