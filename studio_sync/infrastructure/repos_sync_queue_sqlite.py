from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from typing import Any

from studio_sync.core.errors import PersistenceError
from studio_sync.domain.models import QueueStatus, SyncAction, SyncQueueItem
from studio_sync.domain.ports import SyncQueueRepository

_QUEUE_COLUMNS = """
    seq, id, action, entity_type, entity_id, payload, status, attempt_count,
    next_attempt_at, last_error, created_at, updated_at
"""


def _row_to_item(row: sqlite3.Row) -> SyncQueueItem:
    return SyncQueueItem(
        id=row["id"],
        seq=int(row["seq"]),
        action=SyncAction(row["action"]),
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        payload=json.loads(row["payload"]),
        status=QueueStatus(row["status"]),
        created_at=row["created_at"],
        attempt_count=int(row["attempt_count"]),
        next_attempt_at=float(row["next_attempt_at"]),
        last_error=row["last_error"],
        updated_at=row["updated_at"],
    )


class SyncQueueRepositorySQLite(SyncQueueRepository):
    """Durable outbox of remote mutations, ordered by `seq` within each entity."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

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
        cursor = self._connection.cursor()
        try:
            cursor.execute(
                """
                INSERT INTO sync_queue (id, action, entity_type, entity_id, payload, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item_id,
                    SyncAction(action).value,
                    entity_type,
                    entity_id,
                    json.dumps(payload, ensure_ascii=False, default=str),
                    QueueStatus.PENDING.value,
                    created_at,
                    created_at,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise PersistenceError(f"Could not enqueue {action} for {entity_type}/{entity_id}: {exc}") from exc
        return SyncQueueItem(
            id=item_id,
            seq=int(cursor.lastrowid),
            action=SyncAction(action),
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
            status=QueueStatus.PENDING,
            created_at=created_at,
            updated_at=created_at,
        )

    def get(self, item_id: str) -> SyncQueueItem | None:
        cursor = self._connection.cursor()
        cursor.execute(f"SELECT {_QUEUE_COLUMNS} FROM sync_queue WHERE id = ?", (item_id,))
        row = cursor.fetchone()
        return _row_to_item(row) if row else None

    def list_ready_heads(self, now: float, *, exclude_keys: Iterable[tuple[str, str]] = ()) -> list[SyncQueueItem]:
        """Oldest unfinished item of every entity, when it is pending and due.

        An entity whose oldest unfinished item is in flight or failed yields
        nothing, so a later mutation never overtakes an earlier one. A failed
        head holds its entity until it is retried or resolved.
        """

        cursor = self._connection.cursor()
        cursor.execute(
            f"""
            SELECT {", ".join("q." + column.strip() for column in _QUEUE_COLUMNS.split(","))}
            FROM sync_queue q
            JOIN (
                SELECT entity_type, entity_id, MIN(seq) AS head_seq
                FROM sync_queue
                WHERE status IN (?, ?, ?)
                GROUP BY entity_type, entity_id
            ) heads ON heads.head_seq = q.seq
            WHERE q.status = ? AND q.next_attempt_at <= ?
            ORDER BY q.seq ASC
            """,
            (
                QueueStatus.PENDING.value,
                QueueStatus.IN_PROGRESS.value,
                QueueStatus.FAILED.value,
                QueueStatus.PENDING.value,
                float(now),
            ),
        )
        excluded = set(exclude_keys)
        items = [_row_to_item(row) for row in cursor.fetchall()]
        return [item for item in items if item.key not in excluded]

    def claim(self, item_id: str, updated_at: str) -> bool:
        cursor = self._connection.cursor()
        try:
            cursor.execute(
                "UPDATE sync_queue SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (QueueStatus.IN_PROGRESS.value, updated_at, item_id, QueueStatus.PENDING.value),
            )
        except sqlite3.IntegrityError:
            # Another item of the same entity is already in flight.
            return False
        return cursor.rowcount == 1

    def mark_completed(self, item_id: str, updated_at: str) -> None:
        self._connection.execute(
            "UPDATE sync_queue SET status = ?, last_error = NULL, updated_at = ? WHERE id = ?",
            (QueueStatus.COMPLETED.value, updated_at, item_id),
        )

    def reschedule(self, item_id: str, *, attempt_count: int, next_attempt_at: float, error: str, updated_at: str) -> None:
        self._connection.execute(
            """
            UPDATE sync_queue
            SET status = ?, attempt_count = ?, next_attempt_at = ?, last_error = ?, updated_at = ?
            WHERE id = ?
            """,
            (QueueStatus.PENDING.value, attempt_count, float(next_attempt_at), error, updated_at, item_id),
        )

    def mark_failed(self, item_id: str, *, attempt_count: int, error: str, updated_at: str) -> None:
        self._connection.execute(
            """
            UPDATE sync_queue
            SET status = ?, attempt_count = ?, last_error = ?, updated_at = ?
            WHERE id = ?
            """,
            (QueueStatus.FAILED.value, attempt_count, error, updated_at, item_id),
        )

    def reset_in_progress(self, updated_at: str) -> int:
        cursor = self._connection.execute(
            "UPDATE sync_queue SET status = ?, updated_at = ? WHERE status = ?",
            (QueueStatus.PENDING.value, updated_at, QueueStatus.IN_PROGRESS.value),
        )
        return cursor.rowcount

    def reset_failed(self, item_ids: Iterable[str], updated_at: str) -> int:
        total = 0
        for item_id in item_ids:
            cursor = self._connection.execute(
                """
                UPDATE sync_queue
                SET status = ?, attempt_count = 0, next_attempt_at = 0, last_error = NULL, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (QueueStatus.PENDING.value, updated_at, item_id, QueueStatus.FAILED.value),
            )
            total += cursor.rowcount
        return total

    def rewrite(
        self,
        item_id: str,
        *,
        action: SyncAction,
        payload: dict[str, Any],
        from_status: QueueStatus,
        updated_at: str,
    ) -> bool:
        """Turn an item into a fresh pending mutation without moving it in the queue."""
        cursor = self._connection.execute(
            """
            UPDATE sync_queue
            SET action = ?, payload = ?, status = ?, attempt_count = 0, next_attempt_at = 0,
                last_error = NULL, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                SyncAction(action).value,
                json.dumps(payload, ensure_ascii=False, default=str),
                QueueStatus.PENDING.value,
                updated_at,
                item_id,
                QueueStatus(from_status).value,
            ),
        )
        return cursor.rowcount == 1

    def purge_completed(self) -> int:
        cursor = self._connection.execute("DELETE FROM sync_queue WHERE status = ?", (QueueStatus.COMPLETED.value,))
        return cursor.rowcount

    def list_by_status(self, status: QueueStatus) -> list[SyncQueueItem]:
        cursor = self._connection.cursor()
        cursor.execute(
            f"SELECT {_QUEUE_COLUMNS} FROM sync_queue WHERE status = ? ORDER BY seq ASC",
            (QueueStatus(status).value,),
        )
        return [_row_to_item(row) for row in cursor.fetchall()]

    def count_by_status(self) -> dict[str, int]:
        cursor = self._connection.cursor()
        cursor.execute("SELECT status, COUNT(*) AS total FROM sync_queue GROUP BY status")
        counts = {status.value: 0 for status in QueueStatus}
        for row in cursor.fetchall():
            counts[row["status"]] = int(row["total"])
        return counts

    def count_outstanding_by_entity(self) -> dict[str, int]:
        cursor = self._connection.cursor()
        cursor.execute(
            """
            SELECT entity_type, COUNT(*) AS total
            FROM sync_queue
            WHERE status IN (?, ?)
            GROUP BY entity_type
            ORDER BY entity_type
            """,
            (QueueStatus.PENDING.value, QueueStatus.IN_PROGRESS.value),
        )
        return {row["entity_type"]: int(row["total"]) for row in cursor.fetchall()}
