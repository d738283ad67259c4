from __future__ import annotations

import sqlite3

import pytest

from studio_sync.core.errors import PersistenceError
from studio_sync.domain.models import QueueStatus, SyncAction
from studio_sync.infrastructure.repos_sync_queue_sqlite import SyncQueueRepositorySQLite

NOW = "2024-06-01T10:00:00+00:00"


@pytest.fixture
def repo(connection: sqlite3.Connection) -> SyncQueueRepositorySQLite:
    return SyncQueueRepositorySQLite(connection)


def _insert(repo: SyncQueueRepositorySQLite, item_id: str, entity_id: str, action: SyncAction = SyncAction.UPDATE):
    return repo.insert(
        item_id=item_id,
        action=action,
        entity_type="bookings",
        entity_id=entity_id,
        payload={"id": entity_id, "item": item_id},
        created_at=NOW,
    )


def test_insert_round_trips_payload_and_assigns_seq(repo: SyncQueueRepositorySQLite) -> None:
    first = _insert(repo, "q-1", "b-1", SyncAction.CREATE)
    second = _insert(repo, "q-2", "b-1")

    stored = repo.get("q-1")

    assert stored == first
    assert second.seq > first.seq
    assert stored.payload == {"id": "b-1", "item": "q-1"}


def test_duplicate_item_id_is_a_persistence_error(repo: SyncQueueRepositorySQLite) -> None:
    _insert(repo, "q-1", "b-1")

    with pytest.raises(PersistenceError):
        _insert(repo, "q-1", "b-2")


def test_ready_heads_are_oldest_pending_per_entity(repo: SyncQueueRepositorySQLite) -> None:
    _insert(repo, "q-1", "b-1")
    _insert(repo, "q-2", "b-2")
    _insert(repo, "q-3", "b-1")

    assert [item.id for item in repo.list_ready_heads(0.0)] == ["q-1", "q-2"]
    assert [item.id for item in repo.list_ready_heads(0.0, exclude_keys=[("bookings", "b-1")])] == ["q-2"]


def test_in_flight_head_hides_the_entity(repo: SyncQueueRepositorySQLite) -> None:
    _insert(repo, "q-1", "b-1")
    _insert(repo, "q-2", "b-1")

    assert repo.claim("q-1", NOW) is True

    assert repo.list_ready_heads(0.0) == []


def test_backoff_gate_hides_the_whole_entity(repo: SyncQueueRepositorySQLite) -> None:
    _insert(repo, "q-1", "b-1")
    _insert(repo, "q-2", "b-1")
    repo.claim("q-1", NOW)
    repo.reschedule("q-1", attempt_count=1, next_attempt_at=50.0, error="timeout", updated_at=NOW)

    assert repo.list_ready_heads(49.0) == []
    assert [item.id for item in repo.list_ready_heads(50.0)] == ["q-1"]


def test_failed_head_holds_back_its_entity(repo: SyncQueueRepositorySQLite) -> None:
    _insert(repo, "q-1", "b-1")
    _insert(repo, "q-2", "b-1")
    _insert(repo, "q-3", "b-2")
    repo.claim("q-1", NOW)
    repo.mark_failed("q-1", attempt_count=3, error="rejected", updated_at=NOW)

    assert [item.id for item in repo.list_ready_heads(0.0)] == ["q-3"]

    repo.reset_failed(["q-1"], NOW)

    assert [item.id for item in repo.list_ready_heads(0.0)] == ["q-1", "q-3"]


def test_rewrite_keeps_the_queue_position(repo: SyncQueueRepositorySQLite) -> None:
    original = _insert(repo, "q-1", "b-1", SyncAction.CREATE)
    _insert(repo, "q-2", "b-1")
    repo.claim("q-1", NOW)
    repo.mark_failed("q-1", attempt_count=3, error="rejected", updated_at=NOW)

    assert repo.rewrite(
        "q-1",
        action=SyncAction.UPSERT,
        payload={"id": "b-1", "title": "Renamed"},
        from_status=QueueStatus.IN_PROGRESS,
        updated_at=NOW,
    ) is False
    assert repo.rewrite(
        "q-1",
        action=SyncAction.UPSERT,
        payload={"id": "b-1", "title": "Renamed"},
        from_status=QueueStatus.FAILED,
        updated_at=NOW,
    ) is True

    rewritten = repo.get("q-1")
    assert rewritten.seq == original.seq
    assert rewritten.action == SyncAction.UPSERT
    assert rewritten.payload == {"id": "b-1", "title": "Renamed"}
    assert rewritten.status == QueueStatus.PENDING
    assert rewritten.attempt_count == 0
    assert rewritten.last_error is None
    assert [item.id for item in repo.list_ready_heads(0.0)] == ["q-1"]


def test_claim_is_compare_and_set(repo: SyncQueueRepositorySQLite) -> None:
    _insert(repo, "q-1", "b-1")

    assert repo.claim("q-1", NOW) is True
    assert repo.claim("q-1", NOW) is False
    assert repo.claim("missing", NOW) is False


def test_second_item_of_same_entity_cannot_be_in_flight(repo: SyncQueueRepositorySQLite) -> None:
    _insert(repo, "q-1", "b-1")
    _insert(repo, "q-2", "b-1")
    _insert(repo, "q-3", "b-2")

    assert repo.claim("q-1", NOW) is True
    assert repo.claim("q-2", NOW) is False
    assert repo.claim("q-3", NOW) is True
    assert repo.get("q-2").status == QueueStatus.PENDING


def test_status_transitions_and_counts(repo: SyncQueueRepositorySQLite) -> None:
    _insert(repo, "q-1", "b-1")
    _insert(repo, "q-2", "b-2")
    _insert(repo, "q-3", "b-3")
    repo.claim("q-1", NOW)
    repo.mark_completed("q-1", NOW)
    repo.claim("q-2", NOW)
    repo.mark_failed("q-2", attempt_count=3, error="boom", updated_at=NOW)

    assert repo.count_by_status() == {"pending": 1, "in_progress": 0, "completed": 1, "failed": 1}
    assert repo.count_outstanding_by_entity() == {"bookings": 1}
    assert [item.id for item in repo.list_by_status(QueueStatus.FAILED)] == ["q-2"]

    assert repo.reset_failed(["q-2", "q-3"], NOW) == 1
    assert repo.get("q-2").attempt_count == 0
    assert repo.purge_completed() == 1
    assert repo.get("q-1") is None


def test_reset_in_progress(repo: SyncQueueRepositorySQLite) -> None:
    _insert(repo, "q-1", "b-1")
    _insert(repo, "q-2", "b-2")
    repo.claim("q-1", NOW)
    repo.claim("q-2", NOW)

    assert repo.reset_in_progress(NOW) == 2
    assert repo.count_by_status()["pending"] == 2


def test_schema_rejects_unknown_actions(connection: sqlite3.Connection) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        connection.execute(
            "INSERT INTO sync_queue (id, action, entity_type, entity_id, payload, created_at, updated_at) "
            "VALUES ('q', 'merge', 'bookings', 'b', '{}', 'now', 'now')"
        )
