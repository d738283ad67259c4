from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from studio_sync.application.sync_queue import SyncQueueManager
from studio_sync.core.errors import BookingConflictError, NotFoundError, ValidationError
from studio_sync.core.metrics import MetricsRegistry, metrics_registry
from studio_sync.domain.conflicts import evaluate
from studio_sync.domain.models import ActivityLogEntry, Booking, ConflictResult, SyncAction
from studio_sync.domain.time_range import slot_minutes
from studio_sync.domain.workflow import Transition, append_note
from studio_sync.infrastructure.local_store import LocalStore

logger = logging.getLogger(__name__)

BOOKING_ENTITY = "bookings"
WORKFLOW_USER = "system:workflow-monitor"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BookingService:
    """Domain actions on bookings.

    Each action commits the booking row, its activity-log entry and the queued
    remote mutation in one local transaction; a conflict or validation error
    is raised before anything is written.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueueManager,
        *,
        user_id: str = "local",
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._user_id = user_id
        self._metrics = metrics or metrics_registry

    def get(self, booking_id: str) -> Booking:
        with self._store.read():
            booking = self._store.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found.")
        return booking

    def check_conflicts(self, candidate: Booking) -> ConflictResult:
        slot_minutes(candidate.start_time, candidate.end_time)
        with self._store.read():
            existing = self._store.bookings.list_active_on_date(candidate.shoot_date)
        return evaluate(candidate, existing)

    def create_booking(self, booking: Booking) -> tuple[Booking, ConflictResult]:
        if not booking.shoot_date:
            raise ValidationError("A booking needs a shoot date.")
        now = _now_iso()
        candidate = replace(
            booking,
            id=booking.id or str(uuid.uuid4()),
            created_at=booking.created_at or now,
            updated_at=now,
            deleted_at=None,
        )
        with self._store.transaction():
            result = self._ensure_can_save(candidate)
            self._store.bookings.insert(candidate)
            self._log_activity("create", candidate.id, f"status={candidate.status.value}", now)
            self._queue.enqueue(SyncAction.CREATE, BOOKING_ENTITY, candidate.id, candidate.to_payload())
        return candidate, result

    def update_booking(self, booking: Booking) -> tuple[Booking, ConflictResult]:
        """Save edited booking fields. Notes are kept as stored; use `append_note`."""
        now = _now_iso()
        with self._store.transaction():
            current = self._store.bookings.get_by_id(booking.id)
            if current is None or current.is_deleted:
                raise NotFoundError(f"Booking {booking.id} not found.")
            candidate = replace(
                booking,
                notes=current.notes,
                created_at=current.created_at,
                updated_at=now,
                deleted_at=None,
            )
            result = self._ensure_can_save(candidate)
            self._store.bookings.update(candidate)
            self._log_activity("update", candidate.id, None, now)
            self._queue.enqueue(SyncAction.UPDATE, BOOKING_ENTITY, candidate.id, candidate.to_payload())
        return candidate, result

    def soft_delete_booking(self, booking_id: str) -> None:
        now = _now_iso()
        with self._store.transaction():
            if not self._store.bookings.soft_delete(booking_id, now):
                raise NotFoundError(f"Booking {booking_id} not found.")
            self._log_activity("delete", booking_id, None, now)
            self._queue.enqueue(SyncAction.DELETE, BOOKING_ENTITY, booking_id, {"id": booking_id, "soft": True})

    def append_note(self, booking_id: str, note: str) -> Booking:
        if not note.strip():
            raise ValidationError("A note cannot be empty.")
        now = _now_iso()
        with self._store.transaction():
            current = self._store.bookings.get_by_id(booking_id)
            if current is None or current.is_deleted:
                raise NotFoundError(f"Booking {booking_id} not found.")
            updated = replace(current, notes=append_note(current.notes, note.strip()), updated_at=now)
            self._store.bookings.update(updated)
            self._log_activity("note", booking_id, None, now)
            self._queue.enqueue(SyncAction.UPDATE, BOOKING_ENTITY, booking_id, updated.to_payload())
        return updated

    def apply_transition(self, transition: Transition) -> bool:
        """Persist an automated status change; False if the booking already moved on."""
        now = _now_iso()
        with self._store.transaction():
            current = self._store.bookings.get_by_id(transition.booking_id)
            if current is None or current.is_deleted or current.status != transition.from_status:
                return False
            notes = append_note(current.notes, transition.note)
            changed = self._store.bookings.transition_status(
                transition.booking_id,
                from_status=transition.from_status,
                to_status=transition.to_status,
                notes=notes,
                updated_at=now,
            )
            if not changed:
                return False
            updated = replace(current, status=transition.to_status, notes=notes, updated_at=now)
            self._store.activity.append(
                ActivityLogEntry(
                    id=None,
                    user_id=WORKFLOW_USER,
                    action="status_change",
                    entity_type=BOOKING_ENTITY,
                    entity_id=transition.booking_id,
                    details=f"{transition.from_status.value} -> {transition.to_status.value} ({transition.rule})",
                    created_at=now,
                )
            )
            self._queue.enqueue(SyncAction.UPDATE, BOOKING_ENTITY, transition.booking_id, updated.to_payload())
        self._metrics.increment("workflow.transitions")
        logger.info(
            "Booking advanced automatically",
            extra={"extra": self._transition_extra(transition)},
        )
        return True

    def _ensure_can_save(self, candidate: Booking) -> ConflictResult:
        slot_minutes(candidate.start_time, candidate.end_time)
        result = evaluate(candidate, self._store.bookings.list_active_on_date(candidate.shoot_date))
        if not result.can_save:
            raise BookingConflictError(result)
        return result

    def _log_activity(self, action: str, booking_id: str, details: str | None, created_at: str) -> None:
        self._store.activity.append(
            ActivityLogEntry(
                id=None,
                user_id=self._user_id,
                action=action,
                entity_type=BOOKING_ENTITY,
                entity_id=booking_id,
                details=details,
                created_at=created_at,
            )
        )

    @staticmethod
    def _transition_extra(transition: Transition) -> dict[str, Any]:
        return {
            "booking_id": transition.booking_id,
            "rule": transition.rule,
            "from": transition.from_status.value,
            "to": transition.to_status.value,
            "count": transition.count,
        }
