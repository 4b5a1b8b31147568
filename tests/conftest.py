"""
Shared fixtures: a controllable wall clock, stores and resolvers wired to it.
"""
from datetime import datetime, timedelta, timezone

import pytest

from scorecache.cache import BackfillWriter, CacheResolver
from scorecache.store import InMemorySnapshotStore


class ManualClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 3, 15, 19, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return InMemorySnapshotStore()


@pytest.fixture
def backfill(store, clock):
    writer = BackfillWriter(store, max_workers=2, clock=clock)
    yield writer
    writer.shutdown(wait_for_pending=True)


@pytest.fixture
def resolver(store, backfill, clock):
    return CacheResolver(store=store, backfill=backfill, clock=clock)
