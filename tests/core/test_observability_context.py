from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from studio_sync.core.observability import (
    OperationContext,
    get_correlation_id,
    get_operation_name,
    log_event,
)


def test_operation_context_binds_and_restores() -> None:
    assert get_correlation_id() is None

    with OperationContext("sync_drain") as outer:
        assert get_correlation_id() == outer.correlation_id
        with OperationContext("workflow_scan") as inner:
            assert get_operation_name() == "workflow_scan"
            assert inner.correlation_id != outer.correlation_id
        assert get_correlation_id() == outer.correlation_id
        assert get_operation_name() == "sync_drain"

    assert get_correlation_id() is None
    assert get_operation_name() is None


def test_context_does_not_leak_into_plain_worker_threads() -> None:
    with OperationContext("sync_drain"):
        with ThreadPoolExecutor(max_workers=1) as pool:
            seen = pool.submit(get_correlation_id).result()

    assert seen is None


def test_log_event_carries_operation_and_payload(caplog) -> None:
    logger = logging.getLogger("tests.events")

    with caplog.at_level(logging.INFO, logger="tests.events"):
        with OperationContext("sync_drain") as operation:
            event = log_event(logger, "sync_drain_finished", {"completed": 1})

    assert event["correlation_id"] == operation.correlation_id
    assert event["operation"] == "sync_drain"
    assert event["payload"] == {"completed": 1}
    assert caplog.records[-1].getMessage() == "sync_drain_finished"
