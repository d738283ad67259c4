from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from studio_sync.domain.models import Booking, BookingStatus, FolderStats

NOTE_PREFIX = "[Workflow]"


@dataclass(frozen=True)
class AutomationRule:
    """Moves a booking forward when a storage counter becomes positive.

    A rule only fires from its exact `from_status`; once the booking has moved
    on, re-scanning the same folder finds nothing to do.
    """

    name: str
    from_status: BookingStatus
    to_status: BookingStatus
    counter: str
    note_template: str
    notification_template: str

    def matches(self, booking: Booking, stats: FolderStats) -> bool:
        return booking.status == self.from_status and int(getattr(stats, self.counter)) > 0


@dataclass(frozen=True)
class Transition:
    booking_id: str
    rule: str
    from_status: BookingStatus
    to_status: BookingStatus
    count: int
    note: str
    notification: str


DEFAULT_RULES: tuple[AutomationRule, ...] = (
    AutomationRule(
        name="raw_files_detected",
        from_status=BookingStatus.SHOOTING,
        to_status=BookingStatus.SHOOTING_COMPLETED,
        counter="raw",
        note_template=NOTE_PREFIX + " Auto-detected {count} raw files.",
        notification_template="Photos detected for {client}: shooting marked as completed.",
    ),
    AutomationRule(
        name="selection_detected",
        from_status=BookingStatus.SELECTION,
        to_status=BookingStatus.EDITING,
        counter="selected",
        note_template=NOTE_PREFIX + " Auto-detected {count} selections.",
        notification_template="Selections detected for {client}: moved to editing.",
    ),
)


def automatable_statuses(rules: Iterable[AutomationRule] = DEFAULT_RULES) -> frozenset[BookingStatus]:
    return frozenset(rule.from_status for rule in rules)


def detect_transition(
    booking: Booking,
    stats: FolderStats,
    rules: Iterable[AutomationRule] = DEFAULT_RULES,
) -> Transition | None:
    if booking.is_deleted:
        return None
    for rule in rules:
        if not rule.matches(booking, stats):
            continue
        count = int(getattr(stats, rule.counter))
        client = booking.client_name or booking.id
        return Transition(
            booking_id=booking.id,
            rule=rule.name,
            from_status=rule.from_status,
            to_status=rule.to_status,
            count=count,
            note=rule.note_template.format(count=count),
            notification=rule.notification_template.format(client=client, count=count),
        )
    return None


def append_note(existing: str, note: str) -> str:
    if not existing:
        return note
    return f"{existing}\n{note}"
