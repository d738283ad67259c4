from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Callable

from studio_sync.application.booking_service import BookingService
from studio_sync.application.circuit_breaker import CircuitBreaker
from studio_sync.application.retry_policy import RetryPolicy
from studio_sync.application.sync_queue import DrainReport, SyncQueueManager
from studio_sync.application.workflow_monitor import WorkflowAutomationMonitor
from studio_sync.bootstrap.settings import AppSettings, load_settings
from studio_sync.domain.models import SyncQueueItem
from studio_sync.domain.ports import NotificationSink, RemoteConfigStorePort, RemoteSyncPort, StorageStatsPort
from studio_sync.infrastructure.db import get_connection
from studio_sync.infrastructure.health_probes import RemoteConnectivityProbe, SQLiteLocalDbProbe
from studio_sync.infrastructure.local_config import RemoteConfigStore
from studio_sync.infrastructure.local_store import LocalStore
from studio_sync.infrastructure.migrations import MigrationRunner
from studio_sync.infrastructure.notifications import LoggingNotificationSink
from studio_sync.infrastructure.remote_sync_bridge import RemoteSyncBridge
from studio_sync.infrastructure.storage_stats import FilesystemStorageStats


@dataclass
class AppContainer:
    settings: AppSettings
    store: LocalStore
    config_store: RemoteConfigStorePort
    sync_queue: SyncQueueManager
    booking_service: BookingService
    workflow_monitor: WorkflowAutomationMonitor
    local_db_probe: SQLiteLocalDbProbe
    remote_probe: RemoteConnectivityProbe

    def start(self) -> None:
        self.sync_queue.recover_interrupted()
        self.sync_queue.start()
        self.workflow_monitor.start()

    def stop(self) -> None:
        self.workflow_monitor.stop()
        self.sync_queue.stop()

    def close(self) -> None:
        self.stop()
        self.store.close()


ConnectionFactory = Callable[[], sqlite3.Connection]


def _sync_failure_notifier(notifier: NotificationSink) -> Callable[[SyncQueueItem], None]:
    def _notify(item: SyncQueueItem) -> None:
        notifier.notify(f"Sync failed for {item.entity_type} {item.entity_id}: {item.last_error}")

    return _notify


def _drain_summary_notifier(notifier: NotificationSink) -> Callable[[DrainReport], None]:
    def _notify(report: DrainReport) -> None:
        synced = report.completed
        if report.failed:
            notifier.notify(f"Synced {synced} item(s), {report.failed} failed.")
        elif synced:
            notifier.notify(f"Synced {synced} item(s).")

    return _notify


def build_container(
    settings: AppSettings | None = None,
    connection_factory: ConnectionFactory | None = None,
    *,
    config_store: RemoteConfigStorePort | None = None,
    bridge: RemoteSyncPort | None = None,
    storage: StorageStatsPort | None = None,
    notifier: NotificationSink | None = None,
    connectivity_check: Callable[[], bool] | None = None,
) -> AppContainer:
    resolved_settings = settings or load_settings()
    connection = (connection_factory or (lambda: get_connection(resolved_settings.db_path)))()
    runner = MigrationRunner(connection)
    runner.apply_all()

    store = LocalStore(connection)
    resolved_config_store = config_store or RemoteConfigStore()
    resolved_bridge = bridge or RemoteSyncBridge(
        resolved_config_store.load,
        timeout_seconds=resolved_settings.http_timeout_seconds,
    )
    resolved_notifier = notifier or LoggingNotificationSink()
    remote_probe = RemoteConnectivityProbe(resolved_config_store.load)

    sync_queue = SyncQueueManager(
        store,
        resolved_bridge,
        retry_policy=RetryPolicy.from_settings(resolved_settings),
        workers=resolved_settings.workers,
        interval_seconds=resolved_settings.drain_interval_seconds,
        breaker=CircuitBreaker(
            "sync",
            failure_threshold=resolved_settings.breaker_failure_threshold,
            reset_timeout_seconds=resolved_settings.breaker_reset_seconds,
        ),
        connectivity_check=connectivity_check or remote_probe.is_reachable,
    )
    sync_queue.add_failure_callback(_sync_failure_notifier(resolved_notifier))
    sync_queue.add_drain_listener(_drain_summary_notifier(resolved_notifier))

    config = resolved_config_store.load()
    booking_service = BookingService(store, sync_queue, user_id=config.user_id if config else "local")
    workflow_monitor = WorkflowAutomationMonitor(
        store,
        booking_service,
        storage or FilesystemStorageStats(),
        resolved_notifier,
        interval_seconds=resolved_settings.scan_interval_seconds,
    )

    return AppContainer(
        settings=resolved_settings,
        store=store,
        config_store=resolved_config_store,
        sync_queue=sync_queue,
        booking_service=booking_service,
        workflow_monitor=workflow_monitor,
        local_db_probe=SQLiteLocalDbProbe(store, migrations_total=len(runner.migrations)),
        remote_probe=remote_probe,
    )
