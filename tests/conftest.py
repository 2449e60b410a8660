import pytest

from peermint.cache import AccountCache
from peermint.discovery import AccountDiscovery

from fakes import FakeLedger


class FakeClock:

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def cache(clock):
    return AccountCache(ttl_seconds=15, max_entries=16, clock=clock)


@pytest.fixture
def discovery(ledger, cache, clock):
    return AccountDiscovery(ledger, cache=cache, clock=clock)
