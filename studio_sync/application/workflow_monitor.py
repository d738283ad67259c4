from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from studio_sync.application.booking_service import BookingService
from studio_sync.bootstrap.logging import log_operational_error
from studio_sync.core.metrics import MetricsRegistry, metrics_registry
from studio_sync.core.observability import OperationContext
from studio_sync.domain.models import Booking
from studio_sync.domain.ports import NotificationSink, StorageStatsPort
from studio_sync.domain.workflow import DEFAULT_RULES, AutomationRule, Transition, automatable_statuses, detect_transition
from studio_sync.infrastructure.local_store import LocalStore

logger = logging.getLogger(__name__)


class WorkflowAutomationMonitor:
    """Advances bookings by watching their session folders.

    Ticks never overlap: a tick that finds the previous one still running is
    dropped. `stop()` cancels future ticks but lets a running tick finish.
    """

    def __init__(
        self,
        store: LocalStore,
        booking_service: BookingService,
        storage: StorageStatsPort,
        notifier: NotificationSink | None = None,
        *,
        rules: Sequence[AutomationRule] = DEFAULT_RULES,
        interval_seconds: float = 10.0,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._booking_service = booking_service
        self._storage = storage
        self._notifier = notifier
        self._rules = tuple(rules)
        self._interval_seconds = interval_seconds
        self._metrics = metrics or metrics_registry
        self._scan_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval_seconds: float | None = None) -> None:
        thread = self._thread
        if thread is not None and thread.is_alive():
            if not self._stop_event.is_set():
                return
            thread.join()
        if interval_seconds is not None:
            self._interval_seconds = interval_seconds
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="workflow-monitor", daemon=True)
        self._thread.start()
        logger.info("Workflow monitor started", extra={"extra": {"interval_seconds": self._interval_seconds}})

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Workflow monitor still finishing a scan after stop()")
            return
        self._thread = None

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.scan_once()
            except Exception:  # noqa: BLE001
                logger.exception("Workflow scan crashed")
            self._stop_event.wait(self._interval_seconds)

    def scan_once(self) -> list[Transition]:
        if not self._scan_lock.acquire(blocking=False):
            logger.debug("Workflow scan already running, skipping tick")
            return []
        try:
            with OperationContext("workflow_scan"), self._metrics.measure("workflow.scan"):
                return self._scan()
        finally:
            self._scan_lock.release()

    def _scan(self) -> list[Transition]:
        with self._store.read():
            candidates = [
                booking
                for booking in self._store.bookings.list_active_by_statuses(automatable_statuses(self._rules))
                if booking.folder_path
            ]

        applied: list[Transition] = []
        for booking in candidates:
            transition = self._evaluate_booking(booking)
            if transition is None:
                continue
            try:
                changed = self._booking_service.apply_transition(transition)
            except Exception as exc:  # noqa: BLE001
                log_operational_error(
                    logger,
                    "Automated transition could not be stored",
                    exc=exc,
                    extra={"booking_id": booking.id, "rule": transition.rule},
                )
                continue
            if not changed:
                logger.info(
                    "Booking changed before the automated transition was applied",
                    extra={"extra": {"booking_id": booking.id, "rule": transition.rule}},
                )
                continue
            applied.append(transition)
            self._notify(transition)
        return applied

    def _evaluate_booking(self, booking: Booking) -> Transition | None:
        try:
            stats = self._storage.get_stats(booking.folder_path or "")
        except Exception as exc:  # noqa: BLE001
            self._metrics.increment("workflow.lookup_errors")
            log_operational_error(
                logger,
                "Storage lookup failed",
                exc=exc,
                extra={"booking_id": booking.id, "folder_path": booking.folder_path},
            )
            return None
        if stats is None:
            return None
        return detect_transition(booking, stats, self._rules)

    def _notify(self, transition: Transition) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(transition.notification)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Notification sink failed",
                exc_info=True,
                extra={"extra": {"booking_id": transition.booking_id}},
            )
