from __future__ import annotations

import time
from typing import Callable

import requests

from studio_sync.domain.models import RemoteConfig
from studio_sync.infrastructure.local_store import LocalStore

_DB_ACTION = "open_db_help"
_SYNC_ACTION = "open_sync_settings"
_QUEUE_ACTION = "open_sync_queue"

ProbeResult = dict[str, tuple[bool, str, str]]


class SQLiteLocalDbProbe:
    def __init__(self, store: LocalStore, migrations_total: int = 1) -> None:
        self._store = store
        self._migrations_total = migrations_total

    def check(self) -> ProbeResult:
        try:
            with self._store.read() as connection:
                cursor = connection.cursor()
                cursor.execute("SELECT 1")
                db_ok = cursor.fetchone() is not None

                cursor.execute("SELECT COUNT(*) AS total FROM schema_migrations")
                migrations_applied = int(cursor.fetchone()["total"])

                cursor.execute("SELECT COUNT(*) AS total FROM sync_queue WHERE status = 'failed'")
                failed_items = int(cursor.fetchone()["total"])
        except Exception as exc:  # noqa: BLE001
            return {
                "local_db": (False, f"Local database not reachable: {exc}", _DB_ACTION),
                "migrations": (False, "Could not read migration state.", _DB_ACTION),
                "failed_sync": (False, "Could not read the sync queue.", _QUEUE_ACTION),
            }

        migrations_ok = migrations_applied >= self._migrations_total
        failed_ok = failed_items == 0
        return {
            "local_db": (db_ok, "Local database reachable.", _DB_ACTION),
            "migrations": (
                migrations_ok,
                "Migrations up to date." if migrations_ok else "Pending migrations.",
                _DB_ACTION,
            ),
            "failed_sync": (
                failed_ok,
                "No failed sync items." if failed_ok else f"{failed_items} sync item(s) need attention.",
                _QUEUE_ACTION,
            ),
        }


class RemoteConnectivityProbe:
    def __init__(
        self,
        config_provider: Callable[[], RemoteConfig | None],
        session: requests.Session | None = None,
    ) -> None:
        self._config_provider = config_provider
        self._session = session or requests.Session()

    def check(self, *, timeout_seconds: float = 3.0) -> tuple[bool, bool, float | None, str]:
        """Returns (configured, reachable, latency_ms, message)."""
        config = self._config_provider()
        if config is None:
            return False, False, None, "Remote sync is not configured."

        started = time.perf_counter()
        try:
            response = self._session.head(config.remote_url, timeout=timeout_seconds, allow_redirects=True)
        except requests.exceptions.RequestException as exc:
            return True, False, None, f"Remote endpoint not reachable: {exc}"

        latency_ms = (time.perf_counter() - started) * 1000
        reachable = response.status_code < 500
        return True, reachable, latency_ms, f"Approximate remote latency: {latency_ms:.0f} ms."

    def as_result(self, *, timeout_seconds: float = 3.0) -> ProbeResult:
        configured, reachable, _latency, message = self.check(timeout_seconds=timeout_seconds)
        return {
            "remote_config": (configured, "Remote configured." if configured else message, _SYNC_ACTION),
            "remote_reachable": (reachable, message, _SYNC_ACTION),
        }

    def is_reachable(self, *, timeout_seconds: float = 3.0) -> bool:
        return self.check(timeout_seconds=timeout_seconds)[1]
