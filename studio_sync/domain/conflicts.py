from __future__ import annotations

from collections.abc import Iterable

from studio_sync.domain.models import Booking, ConflictResult, ConflictSeverity
from studio_sync.domain.time_range import TimeRangeValidationError, overlaps, slot_minutes

PRIVATE_CANDIDATE_MESSAGE = "Cannot book a private session: the studio is busy at this time."
PRIVATE_EXISTING_MESSAGE = "Cannot book: a private session is already reserved at this time."

NO_CONFLICT = ConflictResult(severity=ConflictSeverity.NONE, message="", conflicting_bookings=(), can_save=True)


def _existing_slot(booking: Booking) -> tuple[int, int] | None:
    try:
        return slot_minutes(booking.start_time, booking.end_time)
    except TimeRangeValidationError:
        return None


def find_overlaps(candidate: Booking, existing_bookings: Iterable[Booking]) -> list[Booking]:
    """Bookings whose slot overlaps the candidate's, in the order given.

    Raises TimeRangeValidationError if the candidate's own slot is malformed.
    """

    candidate_slot = slot_minutes(candidate.start_time, candidate.end_time)
    if candidate_slot is None:
        return []
    start, end = candidate_slot

    result: list[Booking] = []
    for booking in existing_bookings:
        if booking.is_deleted or booking.id == candidate.id:
            continue
        if booking.shoot_date != candidate.shoot_date:
            continue
        other_slot = _existing_slot(booking)
        if other_slot is None:
            continue
        if overlaps(start, end, other_slot[0], other_slot[1]):
            result.append(booking)
    return result


def evaluate(candidate: Booking, existing_bookings: Iterable[Booking]) -> ConflictResult:
    """Decide whether `candidate` may be saved next to `existing_bookings`.

    Privacy dominates plain double-booking: a private candidate never shares a
    slot, and nobody may join a slot held by a private session. Two ordinary
    sessions in the same slot only produce a warning.
    """

    if slot_minutes(candidate.start_time, candidate.end_time) is None:
        return NO_CONFLICT

    overlapping = find_overlaps(candidate, existing_bookings)
    if not overlapping:
        return NO_CONFLICT

    if candidate.is_private:
        return ConflictResult(
            severity=ConflictSeverity.ERROR,
            message=PRIVATE_CANDIDATE_MESSAGE,
            conflicting_bookings=tuple(overlapping),
            can_save=False,
        )

    private_overlaps = tuple(booking for booking in overlapping if booking.is_private)
    if private_overlaps:
        return ConflictResult(
            severity=ConflictSeverity.ERROR,
            message=PRIVATE_EXISTING_MESSAGE,
            conflicting_bookings=private_overlaps,
            can_save=False,
        )

    return ConflictResult(
        severity=ConflictSeverity.WARNING,
        message=f"Note: {len(overlapping)} other booking(s) already scheduled at this time.",
        conflicting_bookings=tuple(overlapping),
        can_save=True,
    )
