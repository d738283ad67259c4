from __future__ import annotations

from studio_sync.core.errors import ValidationError
from studio_sync.domain.time_utils import parse_hhmm


class TimeRangeValidationError(ValidationError):
    """Invalid booking slot.

    Slots are half-open `[start, end)`: the `end` minute is not part of the
    slot, so back-to-back sessions (10:00-11:00 and 11:00-12:00) never overlap.
    """


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and a_end > b_start


def slot_minutes(start_time: str | None, end_time: str | None) -> tuple[int, int] | None:
    """Return the `[start, end)` slot in minutes, or None for an untimed booking."""

    if not start_time and not end_time:
        return None
    if not start_time or not end_time:
        raise TimeRangeValidationError("Start and end time must be set together.")
    try:
        start = parse_hhmm(start_time)
        end = parse_hhmm(end_time)
    except ValueError as exc:
        raise TimeRangeValidationError(str(exc)) from exc
    if end <= start:
        raise TimeRangeValidationError("A session must end after it starts on the same day.")
    return start, end
