from __future__ import annotations

import contextvars
import logging
import threading
import time
import uuid
from collections import Counter
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from studio_sync.application.circuit_breaker import BreakerState, CircuitBreaker
from studio_sync.application.retry_policy import RetryPolicy
from studio_sync.bootstrap.logging import log_operational_error
from studio_sync.core.errors import NotFoundError, ValidationError
from studio_sync.core.metrics import MetricsRegistry, metrics_registry
from studio_sync.core.observability import OperationContext, log_event
from studio_sync.domain.models import QueueStats, QueueStatus, SyncAction, SyncQueueItem, SyncResult
from studio_sync.domain.ports import RemoteSyncPort
from studio_sync.domain.sync_recovery import RESOLUTIONS, Rewrite, resolution_payload, rewrite_for_rejection
from studio_sync.infrastructure.local_store import LocalStore
from studio_sync.infrastructure.repos_sync_queue_sqlite import SyncQueueRepositorySQLite

logger = logging.getLogger(__name__)

UNKNOWN_SYNC_ERROR = "Unknown sync error."

FailureCallback = Callable[[SyncQueueItem], None]
DrainListener = Callable[["DrainReport"], None]
ConnectivityCheck = Callable[[], bool]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class DrainReport:
    completed: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    recovered: int = 0
    deferred: int = 0

    @property
    def attempted(self) -> int:
        return self.completed + self.retried + self.failed + self.recovered + self.deferred


class SyncQueueManager:
    """Durable outbox for remote mutations.

    Items are delivered oldest-first per `(entity_type, entity_id)`; distinct
    entities are submitted concurrently on a thread pool. The pending to
    in_progress compare-and-set is the only single-flight guard, so several
    drains may run at once without double-submitting an item.

    A failed item keeps its place at the head of its entity: later mutations
    of that entity wait until it is retried or resolved. A transport failure
    that the connectivity check confirms as an outage puts the item back
    without spending an attempt and takes the queue offline until
    connectivity returns; otherwise it counts as an ordinary retryable failure.
    """

    def __init__(
        self,
        store: LocalStore,
        bridge: RemoteSyncPort,
        *,
        retry_policy: RetryPolicy | None = None,
        workers: int = 4,
        interval_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
        metrics: MetricsRegistry | None = None,
        breaker: CircuitBreaker | None = None,
        connectivity_check: ConnectivityCheck | None = None,
    ) -> None:
        self._store = store
        self._repo = SyncQueueRepositorySQLite(store.connection)
        self._bridge = bridge
        self._retry_policy = retry_policy or RetryPolicy()
        self._workers = max(1, workers)
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._metrics = metrics or metrics_registry
        self._breaker = breaker or CircuitBreaker("sync", clock=clock)
        self._connectivity_check = connectivity_check
        self._failure_callbacks: list[FailureCallback] = []
        self._drain_listeners: list[DrainListener] = []
        self._online = True
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_failure_callback(self, callback: FailureCallback) -> None:
        self._failure_callbacks.append(callback)

    def add_drain_listener(self, listener: DrainListener) -> None:
        """Called after every drain that submitted at least one item."""
        self._drain_listeners.append(listener)

    def enqueue(self, action: SyncAction | str, entity_type: str, entity_id: str, payload: dict[str, Any]) -> SyncQueueItem:
        """Append a pending item inside the caller's open transaction, if any."""
        try:
            resolved_action = SyncAction(action)
        except ValueError as exc:
            raise ValidationError(f"Unsupported sync action: {action!r}") from exc
        if not entity_type or not entity_id:
            raise ValidationError("A sync item needs an entity type and an entity id.")

        with self._store.transaction():
            item = self._repo.insert(
                item_id=str(uuid.uuid4()),
                action=resolved_action,
                entity_type=entity_type,
                entity_id=entity_id,
                payload=payload,
                created_at=_now_iso(),
            )
        self._metrics.increment("sync.enqueued")
        logger.debug(
            "Sync item enqueued",
            extra={"extra": {"item_id": item.id, "action": item.action.value, "entity": f"{entity_type}/{entity_id}"}},
        )
        return item

    def drain(self) -> DrainReport:
        if not self._online:
            logger.info("Skipping sync drain while offline")
            return DrainReport()
        if not self._breaker.allow_request():
            logger.info("Skipping sync drain while the circuit breaker is open")
            self._publish_gauges()
            return DrainReport()

        counts: Counter[str] = Counter()
        with OperationContext("sync_drain"):
            with self._metrics.measure("sync.drain"):
                self._drain_into(counts)
            report = DrainReport(
                completed=counts["completed"],
                retried=counts["retried"],
                failed=counts["failed"],
                skipped=counts["skipped"],
                recovered=counts["recovered"],
                deferred=counts["deferred"],
            )
            self._publish_gauges()
            if report.attempted or report.skipped:
                log_event(logger, "sync_drain_finished", asdict(report))
            if report.attempted:
                self._notify_drain_listeners(report)
        return report

    def _drain_into(self, counts: Counter[str]) -> None:
        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="sync-drain") as executor:
            in_flight: dict[Future[SyncResult], SyncQueueItem] = {}
            blocked: set[tuple[str, str]] = set()
            while True:
                capacity = self._workers - len(in_flight)
                if capacity > 0 and self._accepting_submissions():
                    exclude = blocked | {item.key for item in in_flight.values()}
                    claimed, lost = self._claim_ready(exclude, capacity)
                    counts["skipped"] += lost
                    for item in claimed:
                        future = executor.submit(
                            contextvars.copy_context().run,
                            self._bridge.submit,
                            item.action,
                            item.entity_type,
                            item.payload,
                        )
                        in_flight[future] = item
                if not in_flight:
                    return
                done, _pending = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    item = in_flight.pop(future)
                    outcome = self._record_outcome(item, future)
                    counts[outcome] += 1
                    if outcome == "retried":
                        blocked.add(item.key)

    def _accepting_submissions(self) -> bool:
        return self._online and self._breaker.state != BreakerState.OPEN

    def _claim_ready(self, exclude: set[tuple[str, str]], limit: int) -> tuple[list[SyncQueueItem], int]:
        claimed: list[SyncQueueItem] = []
        lost = 0
        with self._store.transaction():
            heads = self._repo.list_ready_heads(self._clock(), exclude_keys=exclude)
            for item in heads[:limit]:
                if self._repo.claim(item.id, _now_iso()):
                    claimed.append(replace(item, status=QueueStatus.IN_PROGRESS))
                else:
                    lost += 1
        return claimed, lost

    def _record_outcome(self, item: SyncQueueItem, future: Future[SyncResult]) -> str:
        try:
            result = future.result()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Remote bridge raised instead of returning a result",
                exc_info=True,
                extra={"extra": {"item_id": item.id}},
            )
            result = SyncResult.failure(str(exc) or type(exc).__name__, retryable=True)

        if result.success:
            with self._store.transaction():
                self._repo.mark_completed(item.id, _now_iso())
            self._breaker.record_success()
            self._metrics.increment("sync.completed")
            return "completed"

        error = result.error or UNKNOWN_SYNC_ERROR
        if result.unreachable and not self._confirm_reachable():
            return self._defer(item, error)

        rewrite = rewrite_for_rejection(item, result)
        if rewrite is not None:
            self._breaker.record_success()
            return self._apply_rewrite(item, rewrite, error)

        attempt = item.attempt_count + 1
        if result.retryable:
            self._breaker.record_failure()
        else:
            self._breaker.record_success()

        if result.retryable and not self._retry_policy.exhausted(attempt):
            next_attempt_at = self._clock() + self._retry_policy.delay_for(attempt)
            with self._store.transaction():
                self._repo.reschedule(
                    item.id,
                    attempt_count=attempt,
                    next_attempt_at=next_attempt_at,
                    error=error,
                    updated_at=_now_iso(),
                )
            self._metrics.increment("sync.retried")
            logger.info(
                "Sync item rescheduled",
                extra={"extra": {"item_id": item.id, "attempt": attempt, "error": error}},
            )
            return "retried"

        with self._store.transaction():
            self._repo.mark_failed(item.id, attempt_count=attempt, error=error, updated_at=_now_iso())
        failed_item = replace(item, status=QueueStatus.FAILED, attempt_count=attempt, last_error=error)
        self._metrics.increment("sync.failed")
        log_operational_error(
            logger,
            "Sync item failed",
            extra={
                "item_id": item.id,
                "action": item.action.value,
                "entity_type": item.entity_type,
                "entity_id": item.entity_id,
                "attempts": attempt,
                "status_code": result.status_code,
                "error": error,
            },
        )
        self._report_failure(failed_item)
        return "failed"

    def _confirm_reachable(self) -> bool:
        if not self._online:
            return False
        if self._connectivity_check is None:
            return True
        return self.refresh_connectivity()

    def _defer(self, item: SyncQueueItem, error: str) -> str:
        with self._store.transaction():
            self._repo.reschedule(
                item.id,
                attempt_count=item.attempt_count,
                next_attempt_at=self._clock(),
                error=error,
                updated_at=_now_iso(),
            )
        self._online = False
        logger.warning(
            "Remote unreachable, sync paused until connectivity returns",
            extra={"extra": {"item_id": item.id, "error": error}},
        )
        self._metrics.increment("sync.deferred")
        return "deferred"

    def _apply_rewrite(self, item: SyncQueueItem, rewrite: Rewrite, error: str) -> str:
        with self._store.transaction():
            self._repo.rewrite(
                item.id,
                action=rewrite.action,
                payload=rewrite.payload,
                from_status=QueueStatus.IN_PROGRESS,
                updated_at=_now_iso(),
            )
        self._metrics.increment("sync.recovered")
        logger.info(
            "Sync item re-sent after remote rejection",
            extra={
                "extra": {
                    "item_id": item.id,
                    "from_action": item.action.value,
                    "to_action": rewrite.action.value,
                    "reason": rewrite.reason,
                    "error": error,
                }
            },
        )
        return "recovered"

    def _report_failure(self, item: SyncQueueItem) -> None:
        for callback in list(self._failure_callbacks):
            try:
                callback(item)
            except Exception:  # noqa: BLE001
                logger.exception("Sync failure callback raised", extra={"extra": {"item_id": item.id}})

    def _notify_drain_listeners(self, report: DrainReport) -> None:
        for listener in list(self._drain_listeners):
            try:
                listener(report)
            except Exception:  # noqa: BLE001
                logger.exception("Sync drain listener raised")

    def _publish_gauges(self) -> None:
        with self._store.read():
            counts = self._repo.count_by_status()
        self._metrics.set_gauge("sync.queue.pending", counts.get(QueueStatus.PENDING.value, 0))
        self._metrics.set_gauge("sync.queue.failed", counts.get(QueueStatus.FAILED.value, 0))
        self._metrics.set_gauge("sync.breaker.open", 1 if self._breaker.state == BreakerState.OPEN else 0)

    def start(self) -> None:
        thread = self._thread
        if thread is not None and thread.is_alive():
            if not self._stop_event.is_set():
                return
            # A previous stop() timed out; let that loop finish its drain first.
            thread.join()
        self._stop_event.clear()
        self._wake_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="sync-queue", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop future drains; a drain already running is allowed to finish."""
        self._stop_event.set()
        self._wake_event.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Sync loop still finishing a drain after stop()")
            return
        self._thread = None

    def trigger(self) -> DrainReport | None:
        """Wake the background loop, or drain inline when it is not running."""
        if self.is_running:
            self._wake_event.set()
            return None
        return self.drain()

    def set_online(self, online: bool) -> None:
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Connectivity restored, draining sync queue")
            self.trigger()

    def refresh_connectivity(self) -> bool:
        """Ask the connectivity check whether the remote is reachable and record the answer."""
        if self._connectivity_check is None:
            return self._online
        try:
            online = bool(self._connectivity_check())
        except Exception:  # noqa: BLE001
            logger.warning("Connectivity check raised", exc_info=True)
            online = False
        if online != self._online:
            logger.info("Connectivity changed", extra={"extra": {"online": online}})
        self._online = online
        return online

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.refresh_connectivity()
                self.drain()
            except Exception:  # noqa: BLE001
                logger.exception("Sync drain crashed")
            self._wake_event.wait(self._interval_seconds)
            self._wake_event.clear()

    def recover_interrupted(self) -> int:
        """Return items left in flight by a previous process to pending.

        Only safe before any drain of this process has started.
        """
        with self._store.transaction():
            recovered = self._repo.reset_in_progress(_now_iso())
        if recovered:
            logger.warning("Recovered interrupted sync items", extra={"extra": {"count": recovered}})
        return recovered

    def retry_failed(self, item_id: str) -> bool:
        """Put a failed item back in play at its original position."""
        with self._store.transaction():
            return self._repo.reset_failed([item_id], _now_iso()) == 1

    def retry_failed_for_entities(self, entity_types: Iterable[str]) -> int:
        wanted = set(entity_types)
        with self._store.transaction():
            failed = [item.id for item in self._repo.list_by_status(QueueStatus.FAILED) if item.entity_type in wanted]
            revived = self._repo.reset_failed(failed, _now_iso())
        if revived:
            logger.info("Revived failed sync items", extra={"extra": {"count": revived, "entity_types": sorted(wanted)}})
        return revived

    def resolve_failed(self, item_id: str, resolution: str) -> SyncQueueItem:
        """Turn a failed item into a `resolve_conflict` re-submission, in place.

        `local` asks the remote side to accept the local data as-is; `draft`
        asks it to keep the local data aside for manual review. The item keeps
        its position, so later mutations of the entity still follow it.
        """
        if resolution not in RESOLUTIONS:
            raise ValidationError(f"Unknown resolution {resolution!r}; expected one of {', '.join(RESOLUTIONS)}.")
        with self._store.transaction():
            item = self._repo.get(item_id)
            if item is None or item.status != QueueStatus.FAILED:
                raise NotFoundError(f"No failed sync item with id {item_id}.")
            self._repo.rewrite(
                item_id,
                action=SyncAction.RESOLVE_CONFLICT,
                payload=resolution_payload(item.payload, resolution),
                from_status=QueueStatus.FAILED,
                updated_at=_now_iso(),
            )
            resolved = self._repo.get(item_id)
        logger.info(
            "Failed sync item resolved",
            extra={"extra": {"item_id": item_id, "resolution": resolution, "entity": f"{item.entity_type}/{item.entity_id}"}},
        )
        return resolved

    def purge_completed(self) -> int:
        with self._store.transaction():
            return self._repo.purge_completed()

    def list_failed(self) -> list[SyncQueueItem]:
        with self._store.read():
            return self._repo.list_by_status(QueueStatus.FAILED)

    def get(self, item_id: str) -> SyncQueueItem | None:
        with self._store.read():
            return self._repo.get(item_id)

    def list_items(self, status: QueueStatus) -> list[SyncQueueItem]:
        with self._store.read():
            return self._repo.list_by_status(status)

    def stats(self) -> QueueStats:
        with self._store.read():
            counts = self._repo.count_by_status()
            by_entity = self._repo.count_outstanding_by_entity()
        return QueueStats(
            pending=counts.get(QueueStatus.PENDING.value, 0),
            in_progress=counts.get(QueueStatus.IN_PROGRESS.value, 0),
            completed=counts.get(QueueStatus.COMPLETED.value, 0),
            failed=counts.get(QueueStatus.FAILED.value, 0),
            by_entity=by_entity,
        )
