from __future__ import annotations

import argparse
import faulthandler
import json
import logging
import sys
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable

from studio_sync.bootstrap.container import AppContainer, build_container
from studio_sync.bootstrap.incidents import IncidentReporter
from studio_sync.bootstrap.logging import configure_logging
from studio_sync.bootstrap.settings import resolve_log_dir
from studio_sync.core.metrics import metrics_registry

logger = logging.getLogger(__name__)

ContainerFactory = Callable[[], AppContainer]


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2, default=str) + "\n")


def _run_forever(container: AppContainer, stop_event: threading.Event | None = None) -> int:
    event = stop_event or threading.Event()
    container.start()
    logger.info("Background sync and workflow monitor running")
    try:
        while not event.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping background loops")
    finally:
        container.stop()
    return 0


def _incident_context(container: AppContainer) -> dict[str, Any]:
    stats = container.sync_queue.stats()
    return {
        "queue": {"pending": stats.pending, "in_progress": stats.in_progress, "failed": stats.failed},
        "online": container.sync_queue.is_online,
        "breaker": container.sync_queue.breaker.state.value,
    }


def _drain(container: AppContainer) -> int:
    container.sync_queue.recover_interrupted()
    report = container.sync_queue.drain()
    _write_json({**asdict(report), "metrics": metrics_registry.snapshot()["counters"]})
    return 1 if report.failed else 0


def _scan(container: AppContainer) -> int:
    transitions = container.workflow_monitor.scan_once()
    _write_json(
        [
            {
                "booking_id": transition.booking_id,
                "rule": transition.rule,
                "from": transition.from_status.value,
                "to": transition.to_status.value,
                "count": transition.count,
            }
            for transition in transitions
        ]
    )
    return 0


def _status(container: AppContainer) -> int:
    stats = container.sync_queue.stats()
    failed = container.sync_queue.list_failed()
    _write_json(
        {
            "pending": stats.pending,
            "in_progress": stats.in_progress,
            "completed": stats.completed,
            "failed": stats.failed,
            "online": container.sync_queue.is_online,
            "breaker": container.sync_queue.breaker.state.value,
            "outstanding_by_entity": stats.by_entity,
            "failed_items": [
                {
                    "id": item.id,
                    "action": item.action.value,
                    "entity": f"{item.entity_type}/{item.entity_id}",
                    "attempts": item.attempt_count,
                    "last_error": item.last_error,
                }
                for item in failed
            ],
        }
    )
    return 0


def _health(container: AppContainer) -> int:
    checks = {**container.local_db_probe.check(), **container.remote_probe.as_result()}
    _write_json({name: {"ok": ok, "message": message, "action": action} for name, (ok, message, action) in checks.items()})
    return 0 if all(ok for ok, _message, _action in checks.values()) else 1


COMMANDS: dict[str, Callable[[AppContainer], int]] = {
    "run": _run_forever,
    "drain": _drain,
    "scan": _scan,
    "status": _status,
    "health": _health,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="studio_sync", description="Offline-first studio sync service")
    parser.add_argument("command", choices=sorted(COMMANDS), help="Operation to run")
    parser.add_argument("--log-dir", default=None, help="Override the log directory")
    return parser


def main(argv: list[str] | None = None, container_factory: ContainerFactory | None = None) -> int:
    args = build_parser().parse_args(argv)

    log_dir = Path(args.log_dir) if args.log_dir else resolve_log_dir()
    configure_logging(log_dir)
    reporter = IncidentReporter(log_dir)
    reporter.install()
    faulthandler.enable()

    logger.info("Log dir: %s", log_dir)
    logger.info("Python: %s", sys.version)

    container = (container_factory or build_container)()
    reporter.context_provider = lambda: _incident_context(container)
    try:
        return COMMANDS[args.command](container)
    finally:
        container.close()
