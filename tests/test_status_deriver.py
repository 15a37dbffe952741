"""Unit tests for status derivation and the overdue projection."""

from datetime import date, datetime, time

import pytest

from models import TaskStatus
from status_deriver import OVERDUE, clamp_percent, derive_status, display_status, is_overdue

NOW = datetime(2026, 3, 10, 10, 0)


@pytest.mark.parametrize("value, expected", [(-5, 0), (0, 0), (42, 42), (100, 100), (180, 100), (None, 0)])
def test_clamp_percent(value, expected):
    assert clamp_percent(value) == expected


def test_full_progress_forces_done():
    assert derive_status(TaskStatus.TODO, 100) == TaskStatus.DONE
    assert derive_status(TaskStatus.BLOCKED, 100, "waiting on vendor") == TaskStatus.DONE


def test_todo_with_progress_moves_to_in_progress():
    assert derive_status(TaskStatus.TODO, 10) == TaskStatus.IN_PROGRESS


def test_todo_without_progress_stays_todo():
    assert derive_status(TaskStatus.TODO, 0) == TaskStatus.TODO


def test_blocked_reason_overrides_progress_transition():
    assert derive_status(TaskStatus.TODO, 10, "waiting on vendor") == TaskStatus.BLOCKED
    assert derive_status(TaskStatus.IN_PROGRESS, 50, "waiting") == TaskStatus.BLOCKED


def test_blank_blocked_reason_is_ignored():
    assert derive_status(TaskStatus.TODO, 10, "   ") == TaskStatus.IN_PROGRESS


def test_done_is_not_left_automatically():
    assert derive_status(TaskStatus.DONE, 40) == TaskStatus.DONE


def test_overdue_when_due_before_today():
    assert is_overdue(TaskStatus.IN_PROGRESS, date(2026, 3, 9), time(18, 0), NOW) is True


def test_not_overdue_when_due_earlier_today():
    assert is_overdue(TaskStatus.TODO, date(2026, 3, 10), time(8, 0), NOW) is False


def test_done_task_is_never_overdue():
    assert is_overdue(TaskStatus.DONE, date(2026, 1, 1), None, NOW) is False


def test_undated_task_is_never_overdue():
    assert is_overdue(TaskStatus.TODO, None, None, NOW) is False


def test_display_status():
    assert display_status(TaskStatus.TODO, date(2026, 3, 1), None, NOW) == OVERDUE
    assert display_status(TaskStatus.BLOCKED, date(2026, 3, 11), None, NOW) == "blocked"
