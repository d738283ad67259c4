from __future__ import annotations

import sqlite3
from collections.abc import Iterable

from studio_sync.core.errors import PersistenceError
from studio_sync.domain.models import ActivityLogEntry, Booking, BookingStatus
from studio_sync.domain.ports import ActivityLogRepository, BookingRepository


def _execute_with_validation(cursor: sqlite3.Cursor, sql: str, params: tuple[object, ...], context: str) -> None:
    expected = sql.count("?")
    actual = len(params)
    if expected != actual:
        raise ValueError(
            f"SQL param mismatch for {context}: expected {expected} placeholders, got {actual} parameters."
        )
    cursor.execute(sql, params)


_BOOKING_COLUMNS = """
    id, client_name, title, status, shoot_date, start_time, end_time, is_private,
    folder_path, notes, created_at, updated_at, deleted_at
"""


def _row_to_booking(row: sqlite3.Row) -> Booking:
    return Booking(
        id=row["id"],
        client_name=row["client_name"] or "",
        title=row["title"] or "",
        status=BookingStatus(row["status"]),
        shoot_date=row["shoot_date"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        is_private=bool(row["is_private"]),
        folder_path=row["folder_path"],
        notes=row["notes"] or "",
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row["deleted_at"],
    )


class BookingRepositorySQLite(BookingRepository):
    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

    def get_by_id(self, booking_id: str) -> Booking | None:
        cursor = self._connection.cursor()
        cursor.execute(f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = ?", (booking_id,))
        row = cursor.fetchone()
        return _row_to_booking(row) if row else None

    def list_active_on_date(self, shoot_date: str) -> list[Booking]:
        cursor = self._connection.cursor()
        cursor.execute(
            f"""
            SELECT {_BOOKING_COLUMNS}
            FROM bookings
            WHERE shoot_date = ? AND deleted_at IS NULL
            ORDER BY start_time, created_at, id
            """,
            (shoot_date,),
        )
        return [_row_to_booking(row) for row in cursor.fetchall()]

    def list_active_by_statuses(self, statuses: Iterable[BookingStatus]) -> list[Booking]:
        values = [status.value for status in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        cursor = self._connection.cursor()
        cursor.execute(
            f"""
            SELECT {_BOOKING_COLUMNS}
            FROM bookings
            WHERE deleted_at IS NULL AND status IN ({placeholders})
            ORDER BY shoot_date, created_at, id
            """,
            tuple(values),
        )
        return [_row_to_booking(row) for row in cursor.fetchall()]

    def insert(self, booking: Booking) -> Booking:
        cursor = self._connection.cursor()
        try:
            _execute_with_validation(
                cursor,
                """
                INSERT INTO bookings (
                    id, client_name, title, status, shoot_date, start_time, end_time, is_private,
                    folder_path, notes, created_at, updated_at, deleted_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    booking.id,
                    booking.client_name,
                    booking.title,
                    booking.status.value,
                    booking.shoot_date,
                    booking.start_time,
                    booking.end_time,
                    int(booking.is_private),
                    booking.folder_path,
                    booking.notes,
                    booking.created_at,
                    booking.updated_at,
                    booking.deleted_at,
                ),
                "bookings.insert",
            )
        except sqlite3.IntegrityError as exc:
            raise PersistenceError(f"Could not store booking {booking.id}: {exc}") from exc
        return booking

    def update(self, booking: Booking) -> Booking:
        cursor = self._connection.cursor()
        _execute_with_validation(
            cursor,
            """
            UPDATE bookings
            SET client_name = ?, title = ?, status = ?, shoot_date = ?, start_time = ?, end_time = ?,
                is_private = ?, folder_path = ?, notes = ?, updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (
                booking.client_name,
                booking.title,
                booking.status.value,
                booking.shoot_date,
                booking.start_time,
                booking.end_time,
                int(booking.is_private),
                booking.folder_path,
                booking.notes,
                booking.updated_at,
                booking.id,
            ),
            "bookings.update",
        )
        if cursor.rowcount != 1:
            raise PersistenceError(f"Booking {booking.id} does not exist or is deleted.")
        return booking

    def transition_status(
        self,
        booking_id: str,
        *,
        from_status: BookingStatus,
        to_status: BookingStatus,
        notes: str,
        updated_at: str,
    ) -> bool:
        """Compare-and-set on the current status; False if the booking already moved."""
        cursor = self._connection.cursor()
        _execute_with_validation(
            cursor,
            """
            UPDATE bookings
            SET status = ?, notes = ?, updated_at = ?
            WHERE id = ? AND status = ? AND deleted_at IS NULL
            """,
            (to_status.value, notes, updated_at, booking_id, from_status.value),
            "bookings.transition_status",
        )
        return cursor.rowcount == 1

    def soft_delete(self, booking_id: str, deleted_at: str) -> bool:
        cursor = self._connection.cursor()
        cursor.execute(
            "UPDATE bookings SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (deleted_at, deleted_at, booking_id),
        )
        return cursor.rowcount == 1


class ActivityLogRepositorySQLite(ActivityLogRepository):
    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

    def append(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        cursor = self._connection.cursor()
        _execute_with_validation(
            cursor,
            """
            INSERT INTO activity_logs (user_id, action, entity_type, entity_id, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (entry.user_id, entry.action, entry.entity_type, entry.entity_id, entry.details, entry.created_at),
            "activity_logs.insert",
        )
        return ActivityLogEntry(
            id=cursor.lastrowid,
            user_id=entry.user_id,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            created_at=entry.created_at,
            details=entry.details,
        )

    def list_for_entity(self, entity_type: str, entity_id: str) -> list[ActivityLogEntry]:
        cursor = self._connection.cursor()
        cursor.execute(
            """
            SELECT id, user_id, action, entity_type, entity_id, details, created_at
            FROM activity_logs
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY id ASC
            """,
            (entity_type, entity_id),
        )
        return [
            ActivityLogEntry(
                id=row["id"],
                user_id=row["user_id"],
                action=row["action"],
                entity_type=row["entity_type"],
                entity_id=row["entity_id"],
                created_at=row["created_at"],
                details=row["details"],
            )
            for row in cursor.fetchall()
        ]
