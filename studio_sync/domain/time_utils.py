from __future__ import annotations


def parse_hhmm(value: str) -> int:
    """Parse `HH:MM` into minutes since midnight; hours 0-23, minutes 0-59."""
    parts = value.strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM.")
    try:
        hours = int(parts[0])
        minutes = int(parts[1])
    except ValueError as exc:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM.") from exc
    if hours < 0 or hours > 23 or minutes < 0 or minutes > 59:
        raise ValueError(f"Time out of range: {value!r}.")
    return hours * 60 + minutes
