"""Verify Task/Subtask defaults: fresh timestamps per instance, lifecycle fields start neutral."""

import time

from models import Priority, Subtask, Task, TaskBase, TaskStatus


def test_task_created_at_uses_default_factory():
    """Two Task instances created with a small delay have different created_at."""
    t1 = Task(title="a", created_by=1, description="x")
    time.sleep(0.02)
    t2 = Task(title="b", created_by=1, description="y")
    assert t1.created_at != t2.created_at
    assert t1.created_at <= t2.created_at


def test_task_lifecycle_defaults():
    task = Task(title="a", created_by=1)
    assert task.status == TaskStatus.TODO
    assert task.priority == Priority.LOW
    assert task.progress == 0 and task.performance == 0
    assert task.is_recurrent is False
    assert task.recurrence_rule is None
    assert task.calendar_event_id is None


def test_subtask_starts_open():
    assert Subtask(task_id=1, title="step").done is False


def test_task_base_is_not_a_table():
    assert not hasattr(TaskBase, "__table__")
    assert {"id", "created_by", "created_at", "updated_at"} <= set(Task.model_fields)
    assert not {"id", "created_by", "created_at"} & set(TaskBase.model_fields)
