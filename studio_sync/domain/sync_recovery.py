from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from studio_sync.domain.models import SyncAction, SyncQueueItem, SyncResult

CONFLICT_STATUS = 409
DUPLICATE_MARKERS = ("23505", "duplicate")
DRAFT_RESOLUTION = "draft"
LOCAL_RESOLUTION = "local"
RESOLUTIONS = (LOCAL_RESOLUTION, DRAFT_RESOLUTION)


@dataclass(frozen=True)
class Rewrite:
    action: SyncAction
    payload: dict[str, Any]
    reason: str


def is_duplicate_rejection(result: SyncResult) -> bool:
    error = (result.error or "").lower()
    return any(marker in error for marker in DUPLICATE_MARKERS)


def resolution_payload(local_data: dict[str, Any], resolution: str) -> dict[str, Any]:
    return {"local_data": local_data, "resolution": resolution}


def rewrite_for_rejection(item: SyncQueueItem, result: SyncResult) -> Optional[Rewrite]:
    """Pick the follow-up mutation for a remote rejection, if there is one.

    A `create` whose row already exists remotely is re-sent as an `upsert`.
    An `update` or `upsert` the remote refuses with 409 is parked remotely as
    a draft conflict for manual review. Every other rejection is final.
    """
    if result.success or result.retryable or result.unreachable:
        return None
    if item.action == SyncAction.CREATE and is_duplicate_rejection(result):
        return Rewrite(SyncAction.UPSERT, item.payload, "duplicate_create")
    if item.action in (SyncAction.UPDATE, SyncAction.UPSERT) and result.status_code == CONFLICT_STATUS:
        return Rewrite(
            SyncAction.RESOLVE_CONFLICT,
            resolution_payload(item.payload, DRAFT_RESOLUTION),
            "remote_conflict",
        )
    return None
