from __future__ import annotations

import threading

import pytest

from studio_sync.application.booking_service import BOOKING_ENTITY, WORKFLOW_USER, BookingService
from studio_sync.application.sync_queue import SyncQueueManager
from studio_sync.application.workflow_monitor import WorkflowAutomationMonitor
from studio_sync.core.metrics import MetricsRegistry
from studio_sync.domain.models import BookingStatus, FolderStats, QueueStatus, SyncAction
from studio_sync.infrastructure.local_store import LocalStore
from tests.fakes import FakeStorageStats, RecordingNotifier, make_booking


@pytest.fixture
def storage() -> FakeStorageStats:
    return FakeStorageStats()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def monitor(
    store: LocalStore,
    booking_service: BookingService,
    storage: FakeStorageStats,
    notifier: RecordingNotifier,
    metrics: MetricsRegistry,
) -> WorkflowAutomationMonitor:
    return WorkflowAutomationMonitor(store, booking_service, storage, notifier, interval_seconds=0.05, metrics=metrics)


def _seed(booking_service: BookingService, sync_queue: SyncQueueManager, booking_id: str, status: BookingStatus, folder: str | None) -> None:
    booking_service.create_booking(make_booking(booking_id, status=status, folder_path=folder))
    sync_queue.drain()


def _updates(sync_queue: SyncQueueManager, booking_id: str):
    return [
        item
        for item in sync_queue.list_items(QueueStatus.PENDING)
        if item.entity_id == booking_id and item.action == SyncAction.UPDATE
    ]


def test_raw_files_complete_the_shoot(
    monitor: WorkflowAutomationMonitor,
    booking_service: BookingService,
    sync_queue: SyncQueueManager,
    store: LocalStore,
    storage: FakeStorageStats,
    notifier: RecordingNotifier,
    metrics: MetricsRegistry,
) -> None:
    _seed(booking_service, sync_queue, "b-1", BookingStatus.SHOOTING, "/nas/b-1")
    storage.stats["/nas/b-1"] = FolderStats(raw=3)

    transitions = monitor.scan_once()

    assert [t.booking_id for t in transitions] == ["b-1"]
    booking = store.bookings.get_by_id("b-1")
    assert booking.status == BookingStatus.SHOOTING_COMPLETED
    assert "3" in booking.notes
    updates = _updates(sync_queue, "b-1")
    assert len(updates) == 1
    assert updates[0].payload["status"] == BookingStatus.SHOOTING_COMPLETED.value
    activity = store.activity.list_for_entity(BOOKING_ENTITY, "b-1")
    assert activity[-1].user_id == WORKFLOW_USER
    assert len(notifier.messages) == 1
    assert metrics.counter("workflow.transitions") == 1


def test_second_scan_is_idempotent(
    monitor: WorkflowAutomationMonitor,
    booking_service: BookingService,
    sync_queue: SyncQueueManager,
    storage: FakeStorageStats,
) -> None:
    _seed(booking_service, sync_queue, "b-1", BookingStatus.SHOOTING, "/nas/b-1")
    storage.stats["/nas/b-1"] = FolderStats(raw=3)

    monitor.scan_once()
    assert monitor.scan_once() == []

    assert len(_updates(sync_queue, "b-1")) == 1


def test_selection_moves_to_editing_and_other_states_are_ignored(
    monitor: WorkflowAutomationMonitor,
    booking_service: BookingService,
    sync_queue: SyncQueueManager,
    store: LocalStore,
    storage: FakeStorageStats,
) -> None:
    _seed(booking_service, sync_queue, "sel", BookingStatus.SELECTION, "/nas/sel")
    _seed(booking_service, sync_queue, "edit", BookingStatus.EDITING, "/nas/edit")
    _seed(booking_service, sync_queue, "nofolder", BookingStatus.SHOOTING, None)
    storage.stats.update({"/nas/sel": FolderStats(raw=50, selected=8), "/nas/edit": FolderStats(raw=9, selected=9)})

    transitions = monitor.scan_once()

    assert [(t.booking_id, t.to_status) for t in transitions] == [("sel", BookingStatus.EDITING)]
    assert store.bookings.get_by_id("edit").status == BookingStatus.EDITING
    assert storage.calls == ["/nas/sel"]


def test_unreachable_storage_is_no_signal(
    monitor: WorkflowAutomationMonitor,
    booking_service: BookingService,
    sync_queue: SyncQueueManager,
    store: LocalStore,
    storage: FakeStorageStats,
) -> None:
    _seed(booking_service, sync_queue, "b-1", BookingStatus.SHOOTING, "/nas/offline")
    storage.stats["/nas/offline"] = None

    assert monitor.scan_once() == []
    assert store.bookings.get_by_id("b-1").status == BookingStatus.SHOOTING


def test_lookup_failure_is_isolated_per_booking(
    monitor: WorkflowAutomationMonitor,
    booking_service: BookingService,
    sync_queue: SyncQueueManager,
    store: LocalStore,
    storage: FakeStorageStats,
    metrics: MetricsRegistry,
) -> None:
    _seed(booking_service, sync_queue, "broken", BookingStatus.SHOOTING, "/nas/broken")
    _seed(booking_service, sync_queue, "ok", BookingStatus.SHOOTING, "/nas/ok")
    storage.stats.update({"/nas/broken": OSError("share not mounted"), "/nas/ok": FolderStats(raw=1)})

    transitions = monitor.scan_once()

    assert [t.booking_id for t in transitions] == ["ok"]
    assert store.bookings.get_by_id("broken").status == BookingStatus.SHOOTING
    assert metrics.counter("workflow.lookup_errors") == 1


def test_notification_failure_does_not_undo_transition(
    store: LocalStore,
    booking_service: BookingService,
    sync_queue: SyncQueueManager,
    storage: FakeStorageStats,
) -> None:
    monitor = WorkflowAutomationMonitor(store, booking_service, storage, RecordingNotifier(fail=True))
    _seed(booking_service, sync_queue, "b-1", BookingStatus.SHOOTING, "/nas/b-1")
    storage.stats["/nas/b-1"] = FolderStats(raw=2)

    assert len(monitor.scan_once()) == 1
    assert store.bookings.get_by_id("b-1").status == BookingStatus.SHOOTING_COMPLETED


def test_overlapping_tick_is_dropped(
    store: LocalStore,
    booking_service: BookingService,
    sync_queue: SyncQueueManager,
) -> None:
    entered = threading.Event()
    release = threading.Event()

    class _SlowStorage:
        def get_stats(self, reference: str) -> FolderStats | None:
            entered.set()
            release.wait(5.0)
            return FolderStats(raw=1)

    monitor = WorkflowAutomationMonitor(store, booking_service, _SlowStorage())
    _seed(booking_service, sync_queue, "b-1", BookingStatus.SHOOTING, "/nas/b-1")

    results: list[list] = []
    worker = threading.Thread(target=lambda: results.append(monitor.scan_once()))
    worker.start()
    assert entered.wait(5.0)

    assert monitor.is_scanning
    assert monitor.scan_once() == []

    release.set()
    worker.join(5.0)
    assert len(results[0]) == 1
    assert not monitor.is_scanning


def test_stop_lets_running_tick_finish(
    store: LocalStore,
    booking_service: BookingService,
    sync_queue: SyncQueueManager,
) -> None:
    entered = threading.Event()
    release = threading.Event()

    class _SlowStorage:
        def get_stats(self, reference: str) -> FolderStats | None:
            entered.set()
            release.wait(5.0)
            return FolderStats(raw=4)

    monitor = WorkflowAutomationMonitor(store, booking_service, _SlowStorage(), interval_seconds=0.01)
    _seed(booking_service, sync_queue, "b-1", BookingStatus.SHOOTING, "/nas/b-1")

    monitor.start()
    assert entered.wait(5.0)
    stopper = threading.Thread(target=monitor.stop, kwargs={"timeout": 5.0})
    stopper.start()
    release.set()
    stopper.join(5.0)

    assert not monitor.is_running
    assert store.bookings.get_by_id("b-1").status == BookingStatus.SHOOTING_COMPLETED


def test_timed_out_stop_does_not_forget_the_running_scan(
    store: LocalStore,
    booking_service: BookingService,
    sync_queue: SyncQueueManager,
    metrics: MetricsRegistry,
) -> None:
    entered = threading.Event()
    release = threading.Event()
    lookups: list[str] = []

    class _SlowStorage:
        def get_stats(self, reference: str) -> FolderStats | None:
            lookups.append(reference)
            entered.set()
            release.wait(5.0)
            return None

    monitor = WorkflowAutomationMonitor(store, booking_service, _SlowStorage(), interval_seconds=30.0, metrics=metrics)
    _seed(booking_service, sync_queue, "b-1", BookingStatus.SHOOTING, "/nas/b-1")

    monitor.start()
    assert entered.wait(5.0)
    monitor.stop(timeout=0.05)

    assert monitor.is_running
    assert monitor.is_scanning

    release.set()
    monitor.start()
    try:
        assert monitor.is_running
    finally:
        monitor.stop(timeout=5.0)

    assert not monitor.is_running
    assert metrics.snapshot()["timings_ms"]["workflow.scan"]["count"] == len(lookups)
