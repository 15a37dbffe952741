from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session

import calendar_sync
import db
from errors import IntegrationError
from models import (  # noqa: F401  (registers tables)
    Department,
    Project,
    Team,
    TeamMember,
    User,
    UserStatus,
)
from scope_resolver import Principal

# Tuesday 10:00, inside business hours
NOW = datetime(2026, 3, 10, 10, 0)


class RecordingCalendar:
    """Calendar adapter double: records calls, hands out sequential ids, can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple] = []
        self._next = 1

    def create(self, **fields):
        self.calls.append(("create", None, fields))
        if self.fail:
            raise IntegrationError("calendar down")
        external_id = f"evt-{self._next}"
        self._next += 1
        return external_id

    def update(self, external_id, **fields):
        self.calls.append(("update", external_id, fields))
        if self.fail:
            raise IntegrationError("calendar down")

    def delete(self, external_id):
        self.calls.append(("delete", external_id, {}))
        if self.fail:
            raise IntegrationError("calendar down")


@pytest.fixture
def in_memory_engine(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "get_engine", lambda: engine)
    monkeypatch.setattr(db, "init_db", lambda: None)
    return engine


@pytest.fixture
def db_session(in_memory_engine):
    with Session(in_memory_engine) as session:
        yield session


@pytest.fixture
def calendar(monkeypatch):
    """Recording adapter installed as the process-wide calendar adapter."""
    fake = RecordingCalendar()
    monkeypatch.setattr(calendar_sync, "get_calendar_adapter", lambda: fake)
    return fake


def _add(session, row):
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


@pytest.fixture
def org(db_session):
    """Seed a small organisation and return ids by role.

    ops (managed by mona): mona, alice, bob, sam (suspended)
    sales: carol, dave, erin, frank, peggy, grace
    project apollo (managed by peggy): team alpha (led by dave); grace is on no team
    team alpha members: carol, erin, mona
    team beta (no project, led by carol): frank
    """
    ops = _add(db_session, Department(name="Ops"))
    sales = _add(db_session, Department(name="Sales"))

    def user(name, dept, **kw):
        return _add(db_session, User(name=name, email=f"{name}@example.com", department_id=dept.id, **kw))

    admin = _add(db_session, User(name="root", email="root@example.com", is_admin=True))
    mona = user("mona", ops, is_manager=True)
    alice = user("alice", ops)
    bob = user("bob", ops)
    sam = user("sam", ops, status=UserStatus.SUSPENDED)
    carol = user("carol", sales)
    dave = user("dave", sales)
    erin = user("erin", sales)
    frank = user("frank", sales)
    peggy = user("peggy", sales)
    grace = user("grace", sales)

    ops.manager_id = mona.id
    _add(db_session, ops)

    apollo = _add(db_session, Project(name="Apollo", manager_id=peggy.id))
    alpha = _add(db_session, Team(name="Alpha", leader_user_id=dave.id, project_id=apollo.id))
    beta = _add(db_session, Team(name="Beta", leader_user_id=carol.id))
    for team, members in ((alpha, (carol, erin, mona)), (beta, (frank,))):
        for m in members:
            _add(db_session, TeamMember(team_id=team.id, user_id=m.id))

    users = dict(
        admin=admin, mona=mona, alice=alice, bob=bob, sam=sam, carol=carol,
        dave=dave, erin=erin, frank=frank, peggy=peggy, grace=grace,
    )
    return SimpleNamespace(
        ops=ops.id,
        sales=sales.id,
        apollo=apollo.id,
        alpha=alpha.id,
        beta=beta.id,
        ids=SimpleNamespace(**{k: u.id for k, u in users.items()}),
        principals=SimpleNamespace(**{k: Principal.from_user(u) for k, u in users.items()}),
    )
