"""Role-based scope resolution.

Given a principal, decide which users it may see or assign, and which tasks it
may see. Tiers are evaluated in a fixed order and the first one that matches is
authoritative:

    ADMIN -> DEPARTMENT_MANAGER -> PROJECT_MANAGER -> TEAM_LEAD -> INDIVIDUAL

A principal who manages a department and also leads a team is resolved as a
department manager only. Within a tier, several departments/projects/teams are
unioned. Project managers and team leads see team members only; they are not
added to their own set unless they are members themselves.

Task visibility is always derived from the user set, for admins too: a task is
visible iff its creator or one of its assignees is in the set.

Nothing is cached; the context is rebuilt from the store on every request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from sqlalchemy import false, or_
from sqlmodel import Session, select

import db as _db
from errors import AuthorizationError
from models import (
    Department,
    Project,
    Task,
    TaskAssignee,
    Team,
    TeamMember,
    User,
    UserStatus,
)

logger = logging.getLogger(__name__)


class ScopeTier(str, Enum):
    ADMIN = "admin"
    DEPARTMENT_MANAGER = "department_manager"
    PROJECT_MANAGER = "project_manager"
    TEAM_LEAD = "team_lead"
    INDIVIDUAL = "individual"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as handed over by the upstream gateway."""

    id: int
    is_admin: bool = False
    is_manager: bool = False
    department_id: int | None = None

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(
            id=user.id,
            is_admin=bool(user.is_admin),
            is_manager=bool(user.is_manager),
            department_id=user.department_id,
        )


@dataclass(frozen=True)
class ScopeContext:
    """Resolved tier plus the anchor ids looked up on the way there.

    Tiers after the winning one are never queried, so their id tuples stay empty.
    """

    principal: Principal
    tier: ScopeTier
    managed_department_ids: tuple[int, ...] = ()
    managed_project_ids: tuple[int, ...] = ()
    led_team_ids: tuple[int, ...] = ()


# ---------------------------------------------------------------------------
# Tier lookups
# ---------------------------------------------------------------------------


def _managed_department_ids(session: Session, principal: Principal) -> list[int]:
    ids = set(session.exec(select(Department.id).where(Department.manager_id == principal.id)))
    if principal.is_manager and principal.department_id is not None:
        ids.add(principal.department_id)
    return sorted(ids)


def _managed_project_ids(session: Session, principal: Principal) -> list[int]:
    q = select(Project.id).where(Project.manager_id == principal.id).order_by(Project.id)
    return list(session.exec(q))


def _led_team_ids(session: Session, principal: Principal) -> list[int]:
    q = select(Team.id).where(Team.leader_user_id == principal.id).order_by(Team.id)
    return list(session.exec(q))


# (tier, backing table, lookup, ScopeContext field)
_TIER_CHAIN: tuple[tuple[ScopeTier, str, Callable[[Session, Principal], list[int]], str], ...] = (
    (ScopeTier.DEPARTMENT_MANAGER, "departments", _managed_department_ids, "managed_department_ids"),
    (ScopeTier.PROJECT_MANAGER, "projects", _managed_project_ids, "managed_project_ids"),
    (ScopeTier.TEAM_LEAD, "teams", _led_team_ids, "led_team_ids"),
)


def _table_exists(session: Session, name: str) -> bool:
    return _db.has_table(session.connection(), name)


def resolve_scope(session: Session, principal: Principal) -> ScopeContext:
    """Evaluate tiers in order and stop at the first match."""
    if principal.is_admin:
        return ScopeContext(principal=principal, tier=ScopeTier.ADMIN)

    found: dict[str, tuple[int, ...]] = {}
    for tier, table, lookup, field_name in _TIER_CHAIN:
        if not _table_exists(session, table):
            logger.debug("Scope tier %s skipped: table %s not present", tier.value, table)
            continue
        ids = tuple(lookup(session, principal))
        found[field_name] = ids
        if ids:
            return ScopeContext(principal=principal, tier=tier, **found)
    return ScopeContext(principal=principal, tier=ScopeTier.INDIVIDUAL, **found)


# ---------------------------------------------------------------------------
# User-level scope
# ---------------------------------------------------------------------------


def _active_user_ids(session: Session) -> set[int]:
    return set(session.exec(select(User.id).where(User.status == UserStatus.ACTIVE)))


def _department_member_ids(session: Session, department_ids: Iterable[int]) -> set[int]:
    q = select(User.id).where(
        User.status == UserStatus.ACTIVE,
        User.department_id.in_(list(department_ids)),  # type: ignore[union-attr]
    )
    return set(session.exec(q))


def _project_member_ids(session: Session, project_ids: Iterable[int]) -> set[int]:
    """Members of every team attached to one of the projects."""
    q = select(TeamMember.user_id).join(Team, Team.id == TeamMember.team_id).where(
        Team.project_id.in_(list(project_ids))  # type: ignore[union-attr]
    )
    return set(session.exec(q))


def _team_member_ids(session: Session, team_ids: Iterable[int]) -> set[int]:
    q = select(TeamMember.user_id).where(TeamMember.team_id.in_(list(team_ids)))  # type: ignore[attr-defined]
    return set(session.exec(q))


def resolve_visible_user_ids(
    session: Session,
    principal: Principal,
    context: ScopeContext | None = None,
) -> set[int]:
    """Return the ids of users the principal may see and assign.

    An empty set means "authorized, nothing to show".
    """
    ctx = context or resolve_scope(session, principal)
    if ctx.tier == ScopeTier.ADMIN:
        return _active_user_ids(session)
    if ctx.tier == ScopeTier.DEPARTMENT_MANAGER:
        return _department_member_ids(session, ctx.managed_department_ids)
    if ctx.tier == ScopeTier.PROJECT_MANAGER:
        return _project_member_ids(session, ctx.managed_project_ids)
    if ctx.tier == ScopeTier.TEAM_LEAD:
        return _team_member_ids(session, ctx.led_team_ids)
    return {principal.id}


# ---------------------------------------------------------------------------
# Task-level scope
# ---------------------------------------------------------------------------


def task_filter_for_users(user_ids: set[int]):
    """SQL predicate: creator or any assignee is in ``user_ids``."""
    if not user_ids:
        return false()
    ids = sorted(user_ids)
    assigned = select(TaskAssignee.task_id).where(TaskAssignee.user_id.in_(ids))  # type: ignore[attr-defined]
    return or_(
        Task.created_by.in_(ids),  # type: ignore[attr-defined]
        Task.id.in_(assigned),  # type: ignore[union-attr]
    )


def resolve_task_filter(
    session: Session,
    principal: Principal,
    context: ScopeContext | None = None,
):
    """Return the WHERE predicate selecting tasks visible to the principal."""
    ctx = context or resolve_scope(session, principal)
    return task_filter_for_users(resolve_visible_user_ids(session, principal, ctx))


def can_see_task(session: Session, principal: Principal, task: Task) -> bool:
    visible = resolve_visible_user_ids(session, principal)
    if task.created_by in visible:
        return True
    assignee_ids = set(
        session.exec(select(TaskAssignee.user_id).where(TaskAssignee.task_id == task.id))
    )
    return bool(assignee_ids & visible)


def ensure_assignable(session: Session, principal: Principal, user_ids: Iterable[int]) -> None:
    """Raise AuthorizationError if any id lies outside the principal's scope."""
    wanted = set(user_ids)
    if not wanted:
        return
    allowed = resolve_visible_user_ids(session, principal)
    outside = sorted(wanted - allowed)
    if outside:
        raise AuthorizationError(f"Users outside your scope: {outside}")
