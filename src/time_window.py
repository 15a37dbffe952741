"""Pure date/time arithmetic for task scheduling.

No function here reads the wall clock: callers pass ``now`` explicitly.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

BUSINESS_START = time(7, 30)
BUSINESS_END = time(19, 0)

_MIN_SPAN = timedelta(milliseconds=1)


def parse_time(value: str | time) -> time:
    """Parse ``"HH:MM"`` (seconds tolerated) into a ``time``. Pass-through for ``time``."""
    if isinstance(value, time):
        return value
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    return time(hour, minute, second)


def combine(day: date, at: time | str | None = None) -> datetime:
    """Combine a calendar date and optional time of day. No time means start of day."""
    if at is None or at == "":
        return datetime.combine(day, time.min)
    return datetime.combine(day, parse_time(at))


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def within_business_hours(at: time | str) -> bool:
    """True iff 07:30 <= at <= 19:00, compared at minute resolution."""
    t = parse_time(at)
    minutes = t.hour * 60 + t.minute
    start = BUSINESS_START.hour * 60 + BUSINESS_START.minute
    end = BUSINESS_END.hour * 60 + BUSINESS_END.minute
    return start <= minutes <= end


def elapsed_fraction(created_at: datetime, due_at: datetime, now: datetime) -> float:
    """Share of the created->due window already spent, in [0, +inf).

    The span is floored at one millisecond, so a due moment equal to or before
    creation yields a large finite value instead of a division error.
    """
    span = max(_MIN_SPAN, due_at - created_at)
    elapsed = max(timedelta(0), now - created_at)
    return elapsed / span
