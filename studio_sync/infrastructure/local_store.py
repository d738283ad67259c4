from __future__ import annotations

import contextlib
import sqlite3
import threading
from collections.abc import Iterator

from studio_sync.infrastructure.repos_sqlite import ActivityLogRepositorySQLite, BookingRepositorySQLite


class LocalStore:
    """Single owner of the device's SQLite connection.

    Every read and write goes through `read()` or `transaction()`, which share a
    re-entrant lock, so the queue drain, the workflow monitor and interactive
    edits can run on different threads without interleaving statements on the
    same connection. Remote calls must never happen while the lock is held.

    `transaction()` nests: the outermost call owns BEGIN/COMMIT, inner calls
    become savepoints, so a booking action can enqueue its sync item inside
    its own unit of work and a failed enqueue undoes only what it touched.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.connection = connection
        self._lock = threading.RLock()
        self._depth = 0
        self.bookings = BookingRepositorySQLite(connection)
        self.activity = ActivityLogRepositorySQLite(connection)

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._depth += 1
            try:
                if self._depth == 1:
                    yield from self._outermost()
                else:
                    yield from self._savepoint(f"store_sp_{self._depth}")
            finally:
                self._depth -= 1

    def _outermost(self) -> Iterator[sqlite3.Connection]:
        self.connection.execute("BEGIN")
        try:
            yield self.connection
            self.connection.commit()
        except Exception:
            self.connection.rollback()
            raise

    def _savepoint(self, name: str) -> Iterator[sqlite3.Connection]:
        self.connection.execute(f"SAVEPOINT {name}")
        try:
            yield self.connection
            self.connection.execute(f"RELEASE SAVEPOINT {name}")
        except Exception:
            self.connection.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self.connection.execute(f"RELEASE SAVEPOINT {name}")
            raise

    @contextlib.contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            yield self.connection

    def close(self) -> None:
        with self._lock:
            self.connection.close()
