from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 10
DEFAULT_RESET_TIMEOUT_SECONDS = 120.0


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    state: BreakerState
    failures: int
    last_failure_at: Optional[float]


class CircuitBreaker:
    """Stops hammering a remote that keeps failing.

    After `failure_threshold` failures the breaker opens and `allow_request()`
    answers False until `reset_timeout_seconds` have passed since the last
    failure. It then lets requests through half-open: one success closes it,
    one failure opens it again.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout_seconds: float = DEFAULT_RESET_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self._failure_threshold = max(1, failure_threshold)
        self._reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    def allow_request(self) -> bool:
        with self._lock:
            if self._state != BreakerState.OPEN:
                return True
            if self._last_failure_at is not None and self._clock() - self._last_failure_at >= self._reset_timeout_seconds:
                self._state = BreakerState.HALF_OPEN
                self._failures = 0
                logger.info("Circuit breaker half-open", extra={"extra": {"breaker": self.name}})
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._state == BreakerState.HALF_OPEN:
                self._state = BreakerState.CLOSED
                self._failures = 0
                logger.info("Circuit breaker closed", extra={"extra": {"breaker": self.name}})
            else:
                self._failures = max(0, self._failures - 1)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            if self._state == BreakerState.HALF_OPEN or self._failures >= self._failure_threshold:
                if self._state != BreakerState.OPEN:
                    logger.warning(
                        "Circuit breaker opened",
                        extra={"extra": {"breaker": self.name, "failures": self._failures}},
                    )
                self._state = BreakerState.OPEN

    def reset(self) -> None:
        with self._lock:
            self._state = BreakerState.CLOSED
            self._failures = 0
            self._last_failure_at = None

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            return BreakerSnapshot(self._state, self._failures, self._last_failure_at)
