"""Shared fixtures for the feedcache test suite."""
import pytest

from feedcache.config.settings import CacheSettings


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Create a clock frozen until advanced."""
    return FakeClock()


@pytest.fixture
def settings():
    """Small bounds and the default 5 min / 30 min / 2 min windows."""
    return CacheSettings(
        fresh_duration=300,
        max_age=1800,
        stale_while_revalidate=120,
        max_entities=5,
        max_pages=3,
        metrics_enabled=False,
    )
