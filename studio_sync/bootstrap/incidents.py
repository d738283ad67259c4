from __future__ import annotations

import json
import logging
import sys
import threading
import traceback
import uuid
from pathlib import Path
from types import TracebackType
from typing import Any, Callable

from studio_sync.bootstrap.logging import CRASH_LOG_NAME
from studio_sync.bootstrap.settings import resolve_log_dir
from studio_sync.core.observability import (
    generate_correlation_id,
    get_correlation_id,
    get_operation_name,
    set_correlation_id,
)

INCIDENT_LOGGER_NAME = "studio_sync.incident"

ContextProvider = Callable[[], dict[str, Any]]


def new_incident_id() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


def _ensure_correlation_id() -> str:
    correlation_id = get_correlation_id()
    if correlation_id:
        return correlation_id
    correlation_id = generate_correlation_id()
    set_correlation_id(correlation_id)
    return correlation_id


class IncidentReporter:
    """Records exceptions that escape a command or one of the background loops.

    Every incident gets an id the operator can quote, the correlation id of the
    operation that was running, and whatever `context_provider` reports about
    the sync queue at that moment. The record goes to the crash log through
    the logging stack; if logging itself is broken it is appended to the crash
    log file directly.
    """

    def __init__(self, log_dir: Path | None = None, context_provider: ContextProvider | None = None) -> None:
        self._log_dir = log_dir
        self.context_provider = context_provider

    def report(
        self,
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_traceback: TracebackType | None,
        *,
        thread_name: str | None = None,
    ) -> str:
        incident_id = new_incident_id()
        correlation_id = _ensure_correlation_id()
        details = {
            "incident_id": incident_id,
            "operation": get_operation_name(),
            "thread": thread_name or threading.current_thread().name,
            **self._context(),
        }
        try:
            logging.getLogger(INCIDENT_LOGGER_NAME).critical(
                "Unhandled exception. incident_id=%s",
                incident_id,
                exc_info=(exc_type, exc_value, exc_traceback),
                extra={"correlation_id": correlation_id, "extra": details},
            )
        except Exception:  # noqa: BLE001
            self._append_to_crash_log(correlation_id, details, exc_type, exc_value, exc_traceback)
        return incident_id

    def install(self) -> None:
        """Route uncaught exceptions of the main thread and of worker threads here."""
        sys.excepthook = self._excepthook
        threading.excepthook = self._thread_excepthook

    def _excepthook(
        self,
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_traceback: TracebackType | None,
    ) -> None:
        self.report(exc_type, exc_value, exc_traceback)

    def _thread_excepthook(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_value is None or issubclass(args.exc_type, SystemExit):
            return
        thread_name = args.thread.name if args.thread is not None else None
        self.report(args.exc_type, args.exc_value, args.exc_traceback, thread_name=thread_name)

    def _context(self) -> dict[str, Any]:
        if self.context_provider is None:
            return {}
        try:
            return dict(self.context_provider())
        except Exception as exc:  # noqa: BLE001
            return {"context_error": f"{type(exc).__name__}: {exc}"}

    def _append_to_crash_log(
        self,
        correlation_id: str,
        details: dict[str, Any],
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_traceback: TracebackType | None,
    ) -> None:
        log_dir = self._log_dir or resolve_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        payload = {
            **details,
            "correlation_id": correlation_id,
            "error_type": exc_type.__name__,
            "error_message": str(exc_value),
            "stacktrace": "".join(traceback.format_exception(exc_type, exc_value, exc_traceback)),
        }
        with (log_dir / CRASH_LOG_NAME).open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
