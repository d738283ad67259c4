from __future__ import annotations

import contextlib
from collections import deque
from collections.abc import Iterator
from threading import Lock
from time import perf_counter
from typing import Any

TIMING_WINDOW = 256


def _percentile(values: list[float], fraction: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(len(ordered) - 1, int(round(fraction * (len(ordered) - 1))))
    return ordered[index]


class MetricsRegistry:
    """In-process counters, gauges and timings for the sync and scan loops.

    Counters only grow (`sync.completed`, `workflow.transitions`). Gauges hold
    the last observed value (`sync.queue.pending`, `sync.breaker.open`).
    Timings keep a sliding window of the most recent samples so a long-running
    service reports current drain and scan latency, not a lifetime average.
    """

    def __init__(self, timing_window: int = TIMING_WINDOW) -> None:
        self._lock = Lock()
        self._timing_window = timing_window
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}
        self._timings: dict[str, deque[float]] = {}
        self._timing_totals: dict[str, int] = {}

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def gauge(self, name: str) -> float | None:
        with self._lock:
            return self._gauges.get(name)

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def record_timing(self, name: str, milliseconds: float) -> None:
        with self._lock:
            window = self._timings.get(name)
            if window is None:
                window = self._timings[name] = deque(maxlen=self._timing_window)
            window.append(milliseconds)
            self._timing_totals[name] = self._timing_totals.get(name, 0) + 1

    @contextlib.contextmanager
    def measure(self, name: str) -> Iterator[None]:
        started = perf_counter()
        try:
            yield
        finally:
            self.record_timing(name, (perf_counter() - started) * 1000)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._timings.clear()
            self._timing_totals.clear()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            timings = {name: list(values) for name, values in self._timings.items()}
            totals = dict(self._timing_totals)
        return {
            "counters": counters,
            "gauges": gauges,
            "timings_ms": {
                name: {
                    "count": totals.get(name, len(values)),
                    "last": values[-1] if values else 0.0,
                    "p50": _percentile(values, 0.5),
                    "p95": _percentile(values, 0.95),
                    "max": max(values) if values else 0.0,
                }
                for name, values in timings.items()
            },
        }


metrics_registry = MetricsRegistry()
