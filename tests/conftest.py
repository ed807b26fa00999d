"""
Shared fixtures: an in-memory PostgreSQL stand-in wired into a PoolCache,
and a SchemaService on top of it with a recording activity sink.
"""

import pytest

from db.connection import PoolCache
from services.schema_service import SchemaService
from tests.fakepg import FakeDatabase


class RecordingSink:
    """Activity sink that keeps events in memory."""

    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)

    def operations(self):
        return [e.operation for e in self.events]


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pools(fake_db, clock):
    cache = PoolCache(
        "postgresql://fake",
        pool_factory=fake_db.pool_factory,
        schema_max_conn=3,
        acquire_timeout=0.2,
        clock=clock,
    )
    cache.open()
    yield cache
    cache.shutdown_all()


@pytest.fixture
def events():
    return RecordingSink()


@pytest.fixture
def service(pools, events):
    svc = SchemaService(pools, activity_sink=events)
    svc.bootstrap()
    return svc
