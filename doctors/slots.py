"""
Time slot generation.

Pure functions only: no database access, no clock reads. Callers pass the
current minute-of-day explicitly when the target date is today.

Times are handled as minute-of-day integers internally and as zero-padded
"HH:MM" strings on the wire.
"""

import re
from datetime import time

from appointments.exceptions import ScheduleValidationError

_HHMM_RE = re.compile(r"^([01][0-9]|2[0-3]):([0-5][0-9])$")

MINUTES_PER_DAY = 24 * 60


def parse_hhmm(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    if not isinstance(value, str):
        raise ScheduleValidationError(f"Time must be a string in HH:MM format, got {value!r}.")
    match = _HHMM_RE.match(value.strip())
    if not match:
        raise ScheduleValidationError(f"Time must be in HH:MM format, got {value!r}.")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_hhmm(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise ScheduleValidationError(f"Minute of day out of range: {minutes}.")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise ScheduleValidationError(f"Minute of day out of range: {minutes}.")
    return time(minutes // 60, minutes % 60)


def check_windows(windows: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """
    Validate a list of (start, end) minute windows and return it sorted.

    Raises ScheduleValidationError when a window is empty/inverted or when
    two windows overlap. Touching windows (09:00-10:00, 10:00-11:00) are fine.
    """
    ordered = sorted(windows)
    previous_end = None
    for start, end in ordered:
        if start >= end:
            raise ScheduleValidationError(
                f"Start time must be before end time ({format_hhmm(start)}-{format_hhmm(end)})."
            )
        if previous_end is not None and start < previous_end:
            raise ScheduleValidationError(
                f"Time windows overlap at {format_hhmm(start)}."
            )
        previous_end = end
    return ordered


def generate_slots(
    windows: list[tuple[int, int]],
    duration_minutes: int,
    now_minutes: int | None = None,
) -> list[dict]:
    """
    Split availability windows into consecutive slots of ``duration_minutes``.

    Args:
        windows: Disjoint (start, end) pairs in minutes since midnight.
        duration_minutes: Slot length. Must be positive.
        now_minutes: Current minute of day when the target date is today.
            Slots starting at or before it are dropped.

    Returns:
        [{"start": "HH:MM", "end": "HH:MM"}, ...] ordered by start.
        A window shorter than the duration contributes nothing.
    """
    if not isinstance(duration_minutes, int) or duration_minutes <= 0:
        raise ScheduleValidationError("Slot duration must be a positive number of minutes.")

    slots = []
    for window_start, window_end in check_windows(windows):
        current = window_start
        while current + duration_minutes <= window_end:
            if now_minutes is None or current > now_minutes:
                slots.append(
                    {
                        "start": format_hhmm(current),
                        "end": format_hhmm(current + duration_minutes),
                    }
                )
            current += duration_minutes

    return slots
