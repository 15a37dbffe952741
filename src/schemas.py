"""Request/response schemas for the tasks API.

Uses SQLModel (table=False) for consistency with models.py.
"""

from datetime import date, datetime, time

from sqlmodel import Field, SQLModel

from models import Priority, TaskStatus
from recurrence import RecurrenceDescriptor


class AssigneeRead(SQLModel):
    id: int
    name: str
    email: str


class TaskRead(SQLModel):
    """Task response schema: explicit fields only, plus derived assignee arrays and display status."""

    id: int
    title: str
    description: str | None = None
    due_date: date | None = None
    due_time: time | None = None
    status: TaskStatus
    display_status: str
    progress: int
    performance: int
    priority: Priority
    is_recurrent: bool
    recurrence_rule: str | None = None
    blocked_reason: str | None = None
    department_id: int | None = None
    calendar_event_id: str | None = None
    created_by: int
    created_at: datetime
    updated_at: datetime
    assignees: list[AssigneeRead] = []
    assignee_ids: list[int] = []


class TaskCreate(SQLModel):
    """Request body for creating a task."""

    title: str
    description: str | None = None
    due_date: date | None = None
    due_time: time | None = None
    assignee_ids: list[int] = []
    is_recurrent: bool = False
    recurrence: RecurrenceDescriptor | None = None
    department_id: int | None = None


class TaskUpdate(SQLModel):
    """Request body for partial task update. Only fields present in the body are applied."""

    title: str | None = None
    description: str | None = None
    due_date: date | None = None
    due_time: time | None = None
    status: TaskStatus | None = None
    progress: int | None = None
    performance: int | None = None
    priority: Priority | None = None
    is_recurrent: bool | None = None
    recurrence: RecurrenceDescriptor | None = None
    blocked_reason: str | None = None
    assignee_ids: list[int] | None = None
    department_id: int | None = None


class SubtaskRead(SQLModel):
    id: int
    task_id: int
    title: str
    description: str | None = None
    done: bool
    created_at: datetime


class SubtaskCreate(SQLModel):
    title: str
    description: str | None = None


class SubtaskUpdate(SQLModel):
    title: str | None = None
    description: str | None = None
    done: bool | None = None


class VisibleUserRead(SQLModel):
    id: int
    name: str
    email: str
    department_id: int | None = None


class ScopeRead(SQLModel):
    user_id: int
    tier: str
    managed_department_ids: list[int] = Field(default_factory=list)
    managed_project_ids: list[int] = Field(default_factory=list)
    led_team_ids: list[int] = Field(default_factory=list)
    visible_user_ids: list[int] = Field(default_factory=list)
