from __future__ import annotations

import sqlite3
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from studio_sync.application.booking_service import BookingService
from studio_sync.application.retry_policy import RetryPolicy
from studio_sync.application.sync_queue import SyncQueueManager
from studio_sync.core.metrics import MetricsRegistry
from studio_sync.infrastructure.local_store import LocalStore
from studio_sync.infrastructure.migrations import run_migrations
from tests.fakes import FakeClock, FakeRemoteBridge


@pytest.fixture
def connection() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(connection: sqlite3.Connection) -> LocalStore:
    return LocalStore(connection)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bridge() -> FakeRemoteBridge:
    return FakeRemoteBridge()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def sync_queue(store: LocalStore, bridge: FakeRemoteBridge, clock: FakeClock, metrics: MetricsRegistry) -> SyncQueueManager:
    return SyncQueueManager(
        store,
        bridge,
        retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=1.0, multiplier=2.0, max_delay_seconds=30.0),
        workers=4,
        clock=clock,
        metrics=metrics,
    )


@pytest.fixture
def booking_service(store: LocalStore, sync_queue: SyncQueueManager, metrics: MetricsRegistry) -> BookingService:
    return BookingService(store, sync_queue, user_id="tester", metrics=metrics)
