from __future__ import annotations

from typing import Any, Iterable, Protocol

from studio_sync.domain.models import (
    ActivityLogEntry,
    Booking,
    BookingStatus,
    FolderStats,
    QueueStatus,
    RemoteConfig,
    SyncAction,
    SyncQueueItem,
    SyncResult,
)


class BookingRepository(Protocol):
    def get_by_id(self, booking_id: str) -> Booking | None:
        ...

    def list_active_on_date(self, shoot_date: str) -> Iterable[Booking]:
        ...

    def list_active_by_statuses(self, statuses: Iterable[BookingStatus]) -> Iterable[Booking]:
        ...

    def insert(self, booking: Booking) -> Booking:
        ...

    def update(self, booking: Booking) -> Booking:
        ...

    def transition_status(
        self,
        booking_id: str,
        *,
        from_status: BookingStatus,
        to_status: BookingStatus,
        notes: str,
        updated_at: str,
    ) -> bool:
        ...

    def soft_delete(self, booking_id: str, deleted_at: str) -> bool:
        ...


class ActivityLogRepository(Protocol):
    def append(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        ...

    def list_for_entity(self, entity_type: str, entity_id: str) -> Iterable[ActivityLogEntry]:
        ...


class SyncQueueRepository(Protocol):
    def insert(
        self,
        *,
        item_id: str,
        action: SyncAction,
        entity_type: str,
        entity_id: str,
        payload: dict[str, Any],
        created_at: str,
    ) -> SyncQueueItem:
        ...

    def get(self, item_id: str) -> SyncQueueItem | None:
        ...

    def list_ready_heads(self, now: float, *, exclude_keys: Iterable[tuple[str, str]] = ()) -> list[SyncQueueItem]:
        ...

    def claim(self, item_id: str, updated_at: str) -> bool:
        ...

    def mark_completed(self, item_id: str, updated_at: str) -> None:
        ...

    def reschedule(self, item_id: str, *, attempt_count: int, next_attempt_at: float, error: str, updated_at: str) -> None:
        ...

    def mark_failed(self, item_id: str, *, attempt_count: int, error: str, updated_at: str) -> None:
        ...

    def reset_in_progress(self, updated_at: str) -> int:
        ...

    def reset_failed(self, item_ids: Iterable[str], updated_at: str) -> int:
        ...

    def rewrite(
        self,
        item_id: str,
        *,
        action: SyncAction,
        payload: dict[str, Any],
        from_status: QueueStatus,
        updated_at: str,
    ) -> bool:
        ...

    def purge_completed(self) -> int:
        ...

    def list_by_status(self, status: QueueStatus) -> list[SyncQueueItem]:
        ...

    def count_by_status(self) -> dict[str, int]:
        ...

    def count_outstanding_by_entity(self) -> dict[str, int]:
        ...


class RemoteSyncPort(Protocol):
    def submit(self, action: SyncAction | str, entity_type: str, payload: dict[str, Any]) -> SyncResult:
        ...


class StorageStatsPort(Protocol):
    def get_stats(self, reference: str) -> FolderStats | None:
        ...


class NotificationSink(Protocol):
    def notify(self, message: str) -> None:
        ...


class RemoteConfigStorePort(Protocol):
    def load(self) -> RemoteConfig | None:
        ...

    def save(self, config: RemoteConfig) -> RemoteConfig:
        ...
