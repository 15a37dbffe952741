from sqlmodel import SQLModel, Field
from enum import Enum
from datetime import date, datetime, time
from sqlalchemy import Enum as SQLAEnum


def _enum_type(enum_cls):
    return SQLAEnum(enum_cls, values_callable=lambda x: [e.value for e in x])


class UserStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int = Field(default=None, primary_key=True)
    name: str
    email: str
    is_admin: bool = Field(default=False)
    is_manager: bool = Field(default=False)
    status: UserStatus = Field(default=UserStatus.ACTIVE, sa_type=_enum_type(UserStatus))
    department_id: int | None = Field(default=None, foreign_key="departments.id", index=True)


class Department(SQLModel, table=True):
    __tablename__ = "departments"

    id: int = Field(default=None, primary_key=True)
    name: str
    manager_id: int | None = Field(default=None, index=True)


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: int = Field(default=None, primary_key=True)
    name: str
    description: str = ""
    manager_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=datetime.now)


class Team(SQLModel, table=True):
    __tablename__ = "teams"

    id: int = Field(default=None, primary_key=True)
    name: str
    leader_user_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    project_id: int | None = Field(default=None, foreign_key="projects.id", index=True)


class TeamMember(SQLModel, table=True):
    __tablename__ = "team_members"

    team_id: int = Field(foreign_key="teams.id", primary_key=True)
    user_id: int = Field(foreign_key="users.id", primary_key=True)


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskBase(SQLModel):
    """Task columns apart from identity and audit fields; Task (table) adds those. No table."""

    title: str
    description: str | None = Field(default=None)
    due_date: date | None = Field(default=None)
    due_time: time | None = Field(default=None)
    status: TaskStatus = Field(default=TaskStatus.TODO, sa_type=_enum_type(TaskStatus))
    progress: int = Field(default=0)
    performance: int = Field(default=0)
    priority: Priority = Field(default=Priority.LOW, sa_type=_enum_type(Priority))
    is_recurrent: bool = Field(default=False)
    recurrence_rule: str | None = Field(default=None)
    blocked_reason: str | None = Field(default=None)
    department_id: int | None = Field(default=None)
    calendar_event_id: str | None = Field(default=None)


class Task(TaskBase, table=True):
    __tablename__ = "tasks"

    id: int = Field(default=None, primary_key=True)
    created_by: int = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class TaskAssignee(SQLModel, table=True):
    __tablename__ = "task_assignees"

    task_id: int = Field(foreign_key="tasks.id", primary_key=True)
    user_id: int = Field(foreign_key="users.id", primary_key=True)


class Subtask(SQLModel, table=True):
    __tablename__ = "task_subtasks"

    id: int = Field(default=None, primary_key=True)
    task_id: int = Field(foreign_key="tasks.id", index=True)
    title: str
    description: str | None = Field(default=None)
    done: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.now)
