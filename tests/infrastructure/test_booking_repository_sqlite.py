from __future__ import annotations

import sqlite3
from dataclasses import replace

import pytest

from studio_sync.core.errors import PersistenceError
from studio_sync.domain.models import ActivityLogEntry, BookingStatus
from studio_sync.infrastructure.repos_sqlite import ActivityLogRepositorySQLite, BookingRepositorySQLite
from tests.fakes import make_booking

NOW = "2024-06-01T10:00:00+00:00"


@pytest.fixture
def bookings(connection: sqlite3.Connection) -> BookingRepositorySQLite:
    return BookingRepositorySQLite(connection)


@pytest.fixture
def activity(connection: sqlite3.Connection) -> ActivityLogRepositorySQLite:
    return ActivityLogRepositorySQLite(connection)


def _stored(booking_id: str, **overrides):
    return make_booking(booking_id, created_at=NOW, updated_at=NOW, **overrides)


def test_insert_and_get_round_trip(bookings: BookingRepositorySQLite) -> None:
    booking = _stored("b-1", start_time="10:00", end_time="11:00", is_private=True, folder_path="/nas/b-1")

    bookings.insert(booking)

    assert bookings.get_by_id("b-1") == booking
    assert bookings.get_by_id("missing") is None


def test_list_active_on_date_excludes_deleted_and_other_dates(bookings: BookingRepositorySQLite) -> None:
    bookings.insert(_stored("a", start_time="12:00", end_time="13:00"))
    bookings.insert(_stored("b", start_time="09:00", end_time="10:00"))
    bookings.insert(_stored("c", shoot_date="2024-06-02"))
    bookings.insert(_stored("d"))
    bookings.soft_delete("d", NOW)

    assert [b.id for b in bookings.list_active_on_date("2024-06-01")] == ["b", "a"]


def test_list_active_by_statuses(bookings: BookingRepositorySQLite) -> None:
    bookings.insert(_stored("s", status=BookingStatus.SHOOTING))
    bookings.insert(_stored("e", status=BookingStatus.EDITING))

    assert [b.id for b in bookings.list_active_by_statuses([BookingStatus.SHOOTING])] == ["s"]
    assert bookings.list_active_by_statuses([]) == []


def test_transition_status_is_compare_and_set(bookings: BookingRepositorySQLite) -> None:
    bookings.insert(_stored("s", status=BookingStatus.SHOOTING))

    moved = bookings.transition_status(
        "s",
        from_status=BookingStatus.SHOOTING,
        to_status=BookingStatus.SHOOTING_COMPLETED,
        notes="[Workflow] Auto-detected 3 raw files.",
        updated_at=NOW,
    )
    again = bookings.transition_status(
        "s",
        from_status=BookingStatus.SHOOTING,
        to_status=BookingStatus.SHOOTING_COMPLETED,
        notes="dup",
        updated_at=NOW,
    )

    assert moved is True
    assert again is False
    assert bookings.get_by_id("s").notes == "[Workflow] Auto-detected 3 raw files."


def test_update_missing_or_deleted_booking_fails(bookings: BookingRepositorySQLite) -> None:
    booking = _stored("b-1")
    bookings.insert(booking)
    bookings.soft_delete("b-1", NOW)

    with pytest.raises(PersistenceError):
        bookings.update(replace(booking, title="x"))
    assert bookings.soft_delete("b-1", NOW) is False


def test_schema_requires_both_times_or_none(connection: sqlite3.Connection) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        connection.execute(
            "INSERT INTO bookings (id, status, shoot_date, start_time, created_at, updated_at) "
            "VALUES ('x', 'Inquiry', '2024-06-01', '10:00', 'now', 'now')"
        )


def test_activity_log_is_append_only(activity: ActivityLogRepositorySQLite, connection: sqlite3.Connection) -> None:
    first = activity.append(ActivityLogEntry(None, "u-1", "create", "bookings", "b-1", NOW, "status=Inquiry"))
    activity.append(ActivityLogEntry(None, "u-1", "update", "bookings", "b-1", NOW))

    entries = activity.list_for_entity("bookings", "b-1")

    assert first.id is not None
    assert [entry.action for entry in entries] == ["create", "update"]
    with pytest.raises(sqlite3.DatabaseError):
        connection.execute("UPDATE activity_logs SET action = 'tampered'")
    with pytest.raises(sqlite3.DatabaseError):
        connection.execute("DELETE FROM activity_logs")
