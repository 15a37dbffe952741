"""Task lifecycle service.

Business logic behind the tasks API: scheduling validation, recurrence,
priority escalation, status derivation, scope checks and calendar mirroring.
The API routes are thin wrappers that call these functions.

Each operation runs in a single session/transaction and commits once. Calendar
calls are collected as intents and dispatched only after the commit, so a
calendar outage never rolls back or fails a task write.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, time
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

import calendar_sync
import db as _db
from calendar_sync import CalendarIntent, CalendarSyncAdapter
from errors import AuthorizationError, NotFoundError, StoreError, ValidationError
from models import Priority, Subtask, Task, TaskAssignee, TaskStatus, User, UserStatus
from priority_escalator import escalate
from recurrence import compile_rule
from schemas import (
    AssigneeRead,
    ScopeRead,
    SubtaskCreate,
    SubtaskRead,
    SubtaskUpdate,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    VisibleUserRead,
)
from scope_resolver import (
    Principal,
    can_see_task,
    ensure_assignable,
    resolve_scope,
    resolve_task_filter,
    resolve_visible_user_ids,
    task_filter_for_users,
)
from status_deriver import OVERDUE, clamp_percent, derive_status, display_status
from time_window import combine, start_of_day, within_business_hours

logger = logging.getLogger(__name__)

TASK_SCOPES = ("visible", "mine")


def _ensure_db() -> None:
    _db.init_db()


@contextmanager
def _session() -> Iterator[Session]:
    """Yield a session; store failures are rolled back and re-raised as StoreError."""
    _ensure_db()
    session = Session(_db.get_engine())
    try:
        yield session
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Store failure: %s", exc)
        raise StoreError(f"Store failure: {type(exc).__name__}") from exc
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Principal & scope
# ---------------------------------------------------------------------------


def load_principal(user_id: int) -> Principal:
    """Rebuild the principal from the users table. Unknown or inactive users are rejected."""
    with _session() as session:
        user = session.get(User, user_id)
        if user is None or user.status != UserStatus.ACTIVE:
            raise AuthorizationError("Unknown or inactive user")
        return Principal.from_user(user)


def describe_scope(principal: Principal) -> ScopeRead:
    with _session() as session:
        ctx = resolve_scope(session, principal)
        visible = resolve_visible_user_ids(session, principal, ctx)
        return ScopeRead(
            user_id=principal.id,
            tier=ctx.tier.value,
            managed_department_ids=list(ctx.managed_department_ids),
            managed_project_ids=list(ctx.managed_project_ids),
            led_team_ids=list(ctx.led_team_ids),
            visible_user_ids=sorted(visible),
        )


def list_visible_users(principal: Principal) -> list[VisibleUserRead]:
    """Users the principal may see and assign, ordered by name."""
    with _session() as session:
        ids = resolve_visible_user_ids(session, principal)
        if not ids:
            return []
        q = select(User).where(User.id.in_(sorted(ids))).order_by(User.name, User.id)  # type: ignore[union-attr]
        return [
            VisibleUserRead(id=u.id, name=u.name, email=u.email, department_id=u.department_id)
            for u in session.exec(q)
        ]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _validate_title(title: str | None) -> str:
    if title is None or not title.strip():
        raise ValidationError("Title is required.")
    return title.strip()


def _validate_schedule(due_date: date | None, due_time: time | None, now: datetime) -> None:
    """Due time within business hours; a due moment today may not lie before ``now``."""
    if due_time is not None and not within_business_hours(due_time):
        raise ValidationError("Due time must be between 07:30 and 19:00.")
    if due_date is None:
        return
    due_at = combine(due_date, due_time)
    if start_of_day(due_at) == start_of_day(now) and due_at < now:
        raise ValidationError("Cannot schedule a task earlier than the current time.")


def _get_task(session: Session, task_id: int) -> Task:
    task = session.get(Task, task_id)
    if task is None:
        raise NotFoundError(f"No task with id={task_id}")
    return task


def _get_visible_task(session: Session, task_id: int, principal: Principal) -> Task:
    task = _get_task(session, task_id)
    if not can_see_task(session, principal, task):
        raise AuthorizationError(f"Task {task_id} is outside your scope")
    return task


def _assignee_ids(session: Session, task_id: int) -> set[int]:
    return set(session.exec(select(TaskAssignee.user_id).where(TaskAssignee.task_id == task_id)))


def _replace_assignees(session: Session, task_id: int, user_ids: list[int]) -> None:
    wanted = set(user_ids)
    current = list(session.exec(select(TaskAssignee).where(TaskAssignee.task_id == task_id)))
    kept = set()
    for row in current:
        if row.user_id in wanted:
            kept.add(row.user_id)
        else:
            session.delete(row)
    for uid in dict.fromkeys(user_ids):
        if uid not in kept:
            session.add(TaskAssignee(task_id=task_id, user_id=uid))


def _delete_rows(session: Session, model, *criteria) -> None:
    for row in session.exec(select(model).where(*criteria)):
        session.delete(row)


def _assignees_by_task(session: Session, task_ids: list[int]) -> dict[int, list[AssigneeRead]]:
    out: dict[int, list[AssigneeRead]] = {tid: [] for tid in task_ids}
    if not task_ids:
        return out
    q = (
        select(TaskAssignee.task_id, User)
        .join(User, User.id == TaskAssignee.user_id)
        .where(TaskAssignee.task_id.in_(task_ids))  # type: ignore[attr-defined]
        .order_by(User.name, User.id)
    )
    for task_id, user in session.exec(q):
        out[task_id].append(AssigneeRead(id=user.id, name=user.name, email=user.email))
    return out


def _task_to_read(task: Task, assignees: list[AssigneeRead], now: datetime) -> TaskRead:
    return TaskRead(
        id=task.id,
        title=task.title,
        description=task.description,
        due_date=task.due_date,
        due_time=task.due_time,
        status=task.status,
        display_status=display_status(task.status, task.due_date, task.due_time, now),
        progress=task.progress,
        performance=task.performance,
        priority=task.priority,
        is_recurrent=bool(task.is_recurrent),
        recurrence_rule=task.recurrence_rule,
        blocked_reason=task.blocked_reason,
        department_id=task.department_id,
        calendar_event_id=task.calendar_event_id,
        created_by=task.created_by,
        created_at=task.created_at,
        updated_at=task.updated_at,
        assignees=assignees,
        assignee_ids=[a.id for a in assignees],
    )


def _read_task(session: Session, task: Task, now: datetime) -> TaskRead:
    return _task_to_read(task, _assignees_by_task(session, [task.id])[task.id], now)


def _apply_derived_fields(task: Task, now: datetime) -> None:
    """Escalate priority from the task's current priority, then reconcile status."""
    if task.due_date is not None:
        task.priority = escalate(
            task.priority,
            task.created_at,
            combine(task.due_date, task.due_time),
            task.progress,
            now,
        )
    task.status = derive_status(task.status, task.progress, task.blocked_reason)
    if task.progress >= 100:
        task.performance = 100


def _run_calendar(intents: list[CalendarIntent | None], calendar: CalendarSyncAdapter | None) -> None:
    """Dispatch intents after commit and remember ids of newly created events."""
    intents = [i for i in intents if i is not None]
    if not intents:
        return
    adapter = calendar or calendar_sync.get_calendar_adapter()
    created = calendar_sync.dispatch_intents(intents, adapter)
    if not created:
        return
    try:
        with _session() as session:
            for task_id, external_id in created.items():
                task = session.get(Task, task_id)
                if task is not None:
                    task.calendar_event_id = external_id
                    session.add(task)
            session.commit()
    except StoreError as exc:
        logger.warning("Could not record calendar ids %s: %s", created, exc)


def _reload(task_id: int, now: datetime) -> TaskRead:
    with _session() as session:
        return _read_task(session, _get_task(session, task_id), now)


# ---------------------------------------------------------------------------
# Task lifecycle
# ---------------------------------------------------------------------------


def create_task(
    data: TaskCreate,
    principal: Principal,
    now: datetime | None = None,
    calendar: CalendarSyncAdapter | None = None,
) -> TaskRead:
    """Validate, insert, assign, escalate once, commit, then mirror to the calendar."""
    now = now or datetime.now()
    title = _validate_title(data.title)
    if data.due_date is None:
        raise ValidationError("Due date is required.")
    _validate_schedule(data.due_date, data.due_time, now)
    recurrence_rule = compile_rule(data.recurrence) if data.is_recurrent else None

    with _session() as session:
        assignee_ids = list(dict.fromkeys(data.assignee_ids)) or [principal.id]
        ensure_assignable(session, principal, [uid for uid in assignee_ids if uid != principal.id])

        task = Task(
            title=title,
            description=data.description,
            due_date=data.due_date,
            due_time=data.due_time,
            status=TaskStatus.TODO,
            progress=0,
            performance=0,
            priority=Priority.LOW,
            is_recurrent=data.is_recurrent,
            recurrence_rule=recurrence_rule,
            department_id=data.department_id,
            created_by=principal.id,
            created_at=now,
            updated_at=now,
        )
        session.add(task)
        session.flush()
        _replace_assignees(session, task.id, assignee_ids)
        _apply_derived_fields(task, now)
        session.add(task)
        session.commit()
        session.refresh(task)
        task_id = task.id
        intents = [calendar_sync.upsert_intent(task)]
        logger.info("Created task id=%s '%s' by user %s.", task_id, title, principal.id)

    _run_calendar(intents, calendar)
    return _reload(task_id, now)


def update_task(
    task_id: int,
    patch: TaskUpdate,
    principal: Principal,
    now: datetime | None = None,
    calendar: CalendarSyncAdapter | None = None,
) -> TaskRead:
    """Apply a partial update, recompute priority/status, commit, then sync the calendar.

    Only fields present in ``patch`` are touched. An explicit ``priority`` is a
    human decision and becomes the new baseline for escalation.
    """
    now = now or datetime.now()
    data = patch.model_dump(exclude_unset=True)

    with _session() as session:
        task = _get_visible_task(session, task_id, principal)

        if "title" in data:
            task.title = _validate_title(data["title"])

        if "due_date" in data or "due_time" in data:
            new_date = data["due_date"] if "due_date" in data else task.due_date
            new_time = data["due_time"] if "due_time" in data else task.due_time
            if (new_date, new_time) != (task.due_date, task.due_time):
                _validate_schedule(new_date, new_time, now)
            task.due_date = new_date
            task.due_time = new_time

        if "is_recurrent" in data or "recurrence" in data:
            flag = data.get("is_recurrent")
            if flag is None:
                flag = bool(task.is_recurrent)
            task.is_recurrent = flag
            if not flag:
                task.recurrence_rule = None
            elif "recurrence" in data:
                task.recurrence_rule = compile_rule(patch.recurrence)

        for key in ("description", "blocked_reason", "department_id"):
            if key in data:
                setattr(task, key, data[key])
        if data.get("status") is not None:
            task.status = TaskStatus(data["status"])
        if data.get("priority") is not None:
            task.priority = Priority(data["priority"])
        if data.get("performance") is not None:
            task.performance = clamp_percent(data["performance"])
        if data.get("progress") is not None:
            task.progress = clamp_percent(data["progress"])
            if task.progress >= 100:
                task.status = TaskStatus.DONE
                task.performance = 100

        if data.get("assignee_ids") is not None:
            wanted = list(dict.fromkeys(data["assignee_ids"])) or [task.created_by]
            already = _assignee_ids(session, task.id) | {task.created_by}
            ensure_assignable(session, principal, [uid for uid in wanted if uid not in already])
            _replace_assignees(session, task.id, wanted)

        # An undated task has no event to mirror; drop the one it had.
        intents: list[CalendarIntent | None] = []
        if task.due_date is None and task.calendar_event_id:
            intents.append(calendar_sync.delete_intent(task))
            task.calendar_event_id = None

        task.updated_at = now
        session.add(task)
        session.flush()
        _apply_derived_fields(task, now)
        session.add(task)
        session.commit()
        session.refresh(task)
        if not intents:
            intents.append(calendar_sync.upsert_intent(task))
        logger.info("Updated task id=%s fields=%s by user %s.", task_id, sorted(data), principal.id)

    _run_calendar(intents, calendar)
    return _reload(task_id, now)


def delete_task(
    task_id: int,
    principal: Principal,
    calendar: CalendarSyncAdapter | None = None,
) -> None:
    """Remove the calendar event (best effort), then subtasks, assignments and the task."""
    with _session() as session:
        task = _get_visible_task(session, task_id, principal)
        intent = calendar_sync.delete_intent(task)

    _run_calendar([intent], calendar)

    with _session() as session:
        _delete_rows(session, Subtask, Subtask.task_id == task_id)
        _delete_rows(session, TaskAssignee, TaskAssignee.task_id == task_id)
        session.flush()
        _delete_rows(session, Task, Task.id == task_id)
        session.commit()
    logger.info("Deleted task id=%s by user %s.", task_id, principal.id)


def refresh_task(task_id: int, principal: Principal, now: datetime | None = None) -> TaskRead:
    """Re-run escalation and status derivation without changing any field."""
    now = now or datetime.now()
    with _session() as session:
        task = _get_visible_task(session, task_id, principal)
        before = (task.priority, task.status)
        _apply_derived_fields(task, now)
        if (task.priority, task.status) != before:
            task.updated_at = now
            session.add(task)
            session.commit()
            session.refresh(task)
        return _read_task(session, task, now)


def sync_task_calendar(
    task_id: int,
    principal: Principal,
    calendar: CalendarSyncAdapter | None = None,
    now: datetime | None = None,
) -> TaskRead:
    """Retry the calendar mirror for one task (e.g. after an earlier outage)."""
    now = now or datetime.now()
    with _session() as session:
        task = _get_visible_task(session, task_id, principal)
        intent = calendar_sync.upsert_intent(task)
    _run_calendar([intent], calendar)
    return _reload(task_id, now)


def get_task(task_id: int, principal: Principal, now: datetime | None = None) -> TaskRead:
    """Return one task with assignees. NotFoundError before AuthorizationError."""
    now = now or datetime.now()
    with _session() as session:
        return _read_task(session, _get_visible_task(session, task_id, principal), now)


def list_tasks(
    principal: Principal,
    scope: str = "visible",
    status: str | None = None,
    now: datetime | None = None,
) -> list[TaskRead]:
    """List tasks in the principal's scope, earliest due date first, undated last.

    ``scope="mine"`` restricts to tasks the principal created or is assigned to.
    ``status`` accepts a stored status or ``overdue`` (a read-time projection).
    """
    now = now or datetime.now()
    if scope not in TASK_SCOPES:
        raise ValidationError(f"Invalid scope: {scope}")
    stored_status: TaskStatus | None = None
    if status is not None and status != OVERDUE:
        try:
            stored_status = TaskStatus(status.lower())
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")

    with _session() as session:
        if scope == "mine":
            predicate = task_filter_for_users({principal.id})
        else:
            predicate = resolve_task_filter(session, principal)
        q = select(Task).where(predicate)
        if stored_status is not None:
            q = q.where(Task.status == stored_status)
        q = q.order_by(Task.due_date.is_(None), Task.due_date, Task.id.desc())  # type: ignore[union-attr]
        tasks = list(session.exec(q))
        assignees = _assignees_by_task(session, [t.id for t in tasks])
        items = [_task_to_read(t, assignees[t.id], now) for t in tasks]

    if status == OVERDUE:
        items = [t for t in items if t.display_status == OVERDUE]
    return items


# ---------------------------------------------------------------------------
# Subtasks
# ---------------------------------------------------------------------------


def _subtask_to_read(sub: Subtask) -> SubtaskRead:
    return SubtaskRead(
        id=sub.id,
        task_id=sub.task_id,
        title=sub.title,
        description=sub.description,
        done=bool(sub.done),
        created_at=sub.created_at,
    )


def _get_subtask(session: Session, task_id: int, subtask_id: int) -> Subtask:
    sub = session.get(Subtask, subtask_id)
    if sub is None or sub.task_id != task_id:
        raise NotFoundError(f"No subtask with id={subtask_id} on task {task_id}")
    return sub


def list_subtasks(task_id: int, principal: Principal) -> list[SubtaskRead]:
    with _session() as session:
        _get_visible_task(session, task_id, principal)
        q = select(Subtask).where(Subtask.task_id == task_id).order_by(Subtask.id.desc())  # type: ignore[union-attr]
        return [_subtask_to_read(s) for s in session.exec(q)]


def create_subtask(
    task_id: int,
    data: SubtaskCreate,
    principal: Principal,
    now: datetime | None = None,
) -> SubtaskRead:
    title = _validate_title(data.title)
    with _session() as session:
        _get_visible_task(session, task_id, principal)
        sub = Subtask(
            task_id=task_id,
            title=title,
            description=data.description,
            created_at=now or datetime.now(),
        )
        session.add(sub)
        session.commit()
        session.refresh(sub)
        return _subtask_to_read(sub)


def update_subtask(
    task_id: int,
    subtask_id: int,
    data: SubtaskUpdate,
    principal: Principal,
) -> SubtaskRead:
    """Patch a checklist item. Ticking every item does not complete the parent task."""
    fields = data.model_dump(exclude_unset=True)
    with _session() as session:
        _get_visible_task(session, task_id, principal)
        sub = _get_subtask(session, task_id, subtask_id)
        if "title" in fields:
            sub.title = _validate_title(fields["title"])
        if "description" in fields:
            sub.description = fields["description"]
        if fields.get("done") is not None:
            sub.done = bool(fields["done"])
        session.add(sub)
        session.commit()
        session.refresh(sub)
        return _subtask_to_read(sub)


def delete_subtask(task_id: int, subtask_id: int, principal: Principal) -> None:
    with _session() as session:
        _get_visible_task(session, task_id, principal)
        sub = _get_subtask(session, task_id, subtask_id)
        session.delete(sub)
        session.commit()
