"""Stored-status transitions and the read-only ``overdue`` projection."""

from __future__ import annotations

from datetime import date, datetime, time

from models import TaskStatus
from time_window import combine, start_of_day

OVERDUE = "overdue"


def clamp_percent(value: int | float | None) -> int:
    """Clamp a progress/performance value to [0, 100]. None counts as 0."""
    if value is None:
        return 0
    return int(max(0, min(100, round(value))))


def derive_status(
    status: TaskStatus,
    progress: int,
    blocked_reason: str | None = None,
) -> TaskStatus:
    """Reconcile a stored status with progress and the blocking reason.

    Completion wins over blocking; blocking wins over the todo -> in_progress
    step. Nothing here moves a task out of done.
    """
    status = TaskStatus(status)
    if progress >= 100:
        return TaskStatus.DONE
    if blocked_reason and blocked_reason.strip():
        return TaskStatus.BLOCKED
    if status == TaskStatus.TODO and progress > 0:
        return TaskStatus.IN_PROGRESS
    return status


def is_overdue(
    status: TaskStatus,
    due_date: date | None,
    due_time: time | None,
    now: datetime,
) -> bool:
    if due_date is None or TaskStatus(status) == TaskStatus.DONE:
        return False
    return combine(due_date, due_time) < start_of_day(now)


def display_status(
    status: TaskStatus,
    due_date: date | None,
    due_time: time | None,
    now: datetime,
) -> str:
    """Status for presentation: ``overdue`` or the stored value. Never written back."""
    if is_overdue(status, due_date, due_time, now):
        return OVERDUE
    return TaskStatus(status).value
