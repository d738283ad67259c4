from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class BookingStatus(str, Enum):
    INQUIRY = "Inquiry"
    CONFIRMED = "Confirmed"
    SHOOTING = "Shooting"
    SHOOTING_COMPLETED = "Shooting Completed"
    SELECTION = "Selection"
    EDITING = "Editing"
    READY_TO_PRINT = "Ready to Print"
    PRINTING = "Printing"
    READY_FOR_PICKUP = "Ready for Pickup"
    DELIVERED = "Delivered"
    ARCHIVED = "Archived"
    CLIENT_DELAY = "Client Delay"


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    UPSERT = "upsert"
    RESOLVE_CONFLICT = "resolve_conflict"


class QueueStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ConflictSeverity(str, Enum):
    NONE = "none"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Booking:
    """A studio session as stored on this device.

    `start_time`/`end_time` are `HH:MM` wall-clock strings on `shoot_date`; they
    are either both set or both empty. `notes` only ever grows: automated and
    manual notes are appended, never rewritten.
    """

    id: str
    shoot_date: str
    status: BookingStatus = BookingStatus.INQUIRY
    client_name: str = ""
    title: str = ""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_private: bool = False
    folder_path: Optional[str] = None
    notes: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return bool(self.deleted_at)

    @property
    def has_time_slot(self) -> bool:
        return bool(self.start_time) and bool(self.end_time)

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


@dataclass(frozen=True)
class SyncQueueItem:
    id: str
    seq: int
    action: SyncAction
    entity_type: str
    entity_id: str
    payload: dict[str, Any]
    status: QueueStatus
    created_at: str
    attempt_count: int = 0
    next_attempt_at: float = 0.0
    last_error: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.entity_type, self.entity_id)


@dataclass(frozen=True)
class ActivityLogEntry:
    id: Optional[int]
    user_id: str
    action: str
    entity_type: str
    entity_id: str
    created_at: str
    details: Optional[str] = None


@dataclass(frozen=True)
class ConflictResult:
    severity: ConflictSeverity
    message: str
    conflicting_bookings: tuple[Booking, ...] = ()
    can_save: bool = True


@dataclass(frozen=True)
class FolderStats:
    raw: int = 0
    selected: int = 0
    edited: int = 0
    final: int = 0


@dataclass(frozen=True)
class SyncResult:
    """Normalized outcome of one remote call: `data` on success, a flat `error` otherwise.

    `unreachable` marks failures where the remote was never reached (missing
    configuration or a transport error); those say nothing about the
    mutation itself.
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    retryable: bool = False
    status_code: Optional[int] = None
    unreachable: bool = False

    @classmethod
    def ok(cls, data: Any = None, status_code: Optional[int] = None) -> "SyncResult":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def failure(
        cls,
        error: str,
        *,
        retryable: bool,
        status_code: Optional[int] = None,
        unreachable: bool = False,
    ) -> "SyncResult":
        return cls(success=False, error=error, retryable=retryable, status_code=status_code, unreachable=unreachable)


@dataclass(frozen=True)
class RemoteConfig:
    remote_url: str
    api_key: str
    device_id: str
    user_id: str = "local"


@dataclass(frozen=True)
class QueueStats:
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    by_entity: dict[str, int] = field(default_factory=dict)

    @property
    def outstanding(self) -> int:
        return self.pending + self.in_progress
