"""Time-driven priority escalation.

Escalation runs on every task write (and on explicit refresh), not on a timer,
so a raised priority is only observed at the next mutation.
"""

from __future__ import annotations

from datetime import datetime

from models import Priority
from time_window import elapsed_fraction

PRIORITY_RANK = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3}

_FIRST_STEP_PCT = 50
_SECOND_STEP_PCT = 70
_LAGGING_PROGRESS = 30


def max_priority(a: Priority, b: Priority) -> Priority:
    return a if PRIORITY_RANK[a] >= PRIORITY_RANK[b] else b


def escalate(
    current: Priority,
    created_at: datetime,
    due_at: datetime,
    progress: int,
    now: datetime,
) -> Priority:
    """Return the escalated priority for a task; never lower than ``current``.

    - 50% <= elapsed < 70%: low -> medium, medium -> high
    - elapsed >= 70%: medium -> high
    - elapsed >= 70% and progress < 30: high
    """
    current = Priority(current)
    pct = elapsed_fraction(created_at, due_at, now) * 100

    new = current
    if _FIRST_STEP_PCT <= pct < _SECOND_STEP_PCT:
        if current == Priority.LOW:
            new = Priority.MEDIUM
        elif current == Priority.MEDIUM:
            new = Priority.HIGH
    elif pct >= _SECOND_STEP_PCT:
        if current == Priority.MEDIUM:
            new = Priority.HIGH
        if progress < _LAGGING_PROGRESS:
            new = Priority.HIGH

    return max_priority(new, current)
