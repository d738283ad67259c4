from __future__ import annotations

import threading

import pytest

from studio_sync.core.metrics import MetricsRegistry


def test_counters_default_to_zero_and_accumulate() -> None:
    registry = MetricsRegistry()

    registry.increment("sync.completed")
    registry.increment("sync.completed", 2)

    assert registry.counter("sync.completed") == 3
    assert registry.counter("sync.failed") == 0


def test_gauges_keep_the_last_value() -> None:
    registry = MetricsRegistry()

    assert registry.gauge("sync.queue.pending") is None
    registry.set_gauge("sync.queue.pending", 4)
    registry.set_gauge("sync.queue.pending", 1)

    assert registry.gauge("sync.queue.pending") == 1.0
    assert registry.snapshot()["gauges"] == {"sync.queue.pending": 1.0}


def test_timings_keep_a_sliding_window() -> None:
    registry = MetricsRegistry(timing_window=3)
    for value in (100.0, 1.0, 2.0, 3.0):
        registry.record_timing("sync.drain", value)

    summary = registry.snapshot()["timings_ms"]["sync.drain"]

    assert summary["count"] == 4
    assert summary["last"] == 3.0
    assert summary["max"] == 3.0
    assert summary["p50"] == 2.0


def test_increment_is_thread_safe() -> None:
    registry = MetricsRegistry()

    def _work() -> None:
        for _ in range(500):
            registry.increment("sync.enqueued")

    threads = [threading.Thread(target=_work) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert registry.counter("sync.enqueued") == 4000


def test_measure_records_even_when_the_block_raises() -> None:
    registry = MetricsRegistry()

    with pytest.raises(RuntimeError):
        with registry.measure("workflow.scan"):
            raise RuntimeError("storage offline")

    assert registry.snapshot()["timings_ms"]["workflow.scan"]["count"] == 1


def test_reset_clears_everything() -> None:
    registry = MetricsRegistry()
    registry.increment("sync.retried")
    registry.set_gauge("sync.breaker.open", 1)
    registry.record_timing("sync.drain", 1.0)

    registry.reset()

    assert registry.snapshot() == {"counters": {}, "gauges": {}, "timings_ms": {}}
