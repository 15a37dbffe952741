"""Relational store connection and schema init for officetasks.

Uses SQLModel on a psycopg2 engine; connection params from env (POSTGRES_*),
or a full SQLAlchemy URL from DATABASE_URL.
"""

import logging
import os

import sqlalchemy
from sqlalchemy import create_engine
from sqlmodel import SQLModel

from models import (  # noqa: F401  (registers all tables)
    Department,
    Project,
    Subtask,
    Task,
    TaskAssignee,
    Team,
    TeamMember,
    User,
)

logger = logging.getLogger(__name__)


def _connection_params():
    return {
        "host": os.environ.get("POSTGRES_HOST", "localhost"),
        "port": int(os.environ.get("POSTGRES_PORT", "5432")),
        "user": os.environ.get("POSTGRES_USER", "postgres"),
        "password": os.environ.get("POSTGRES_PASSWORD", ""),
        "dbname": os.environ.get("POSTGRES_DB", "postgres"),
    }


def _database_url() -> str:
    override = (os.environ.get("DATABASE_URL") or "").strip()
    if override:
        return override
    p = _connection_params()
    return (
        f"postgresql+psycopg2://{p['user']}:{p['password']}"
        f"@{p['host']}:{p['port']}/{p['dbname']}"
    )


_engine = None


def get_engine():
    """Return a shared SQLAlchemy engine for SQLModel sessions."""
    global _engine
    if _engine is None:
        _engine = create_engine(_database_url(), echo=False, pool_pre_ping=True)
    return _engine


def _migrate_add_columns(engine) -> None:
    """Idempotently add columns introduced after the first deployments (PostgreSQL only)."""
    if engine.dialect.name != "postgresql":
        return
    sqls = [
        "ALTER TABLE tasks ADD COLUMN IF NOT EXISTS blocked_reason VARCHAR",
        "ALTER TABLE tasks ADD COLUMN IF NOT EXISTS department_id INTEGER",
        "ALTER TABLE tasks ADD COLUMN IF NOT EXISTS calendar_event_id VARCHAR",
        "ALTER TABLE tasks ADD COLUMN IF NOT EXISTS recurrence_rule VARCHAR",
    ]
    with engine.connect() as conn:
        for sql in sqls:
            try:
                conn.execute(sqlalchemy.text(sql))
                conn.commit()
            except sqlalchemy.exc.SQLAlchemyError as exc:
                conn.rollback()
                logger.debug("Migration skipped (%s): %s", sql, exc)


def has_table(engine, name: str) -> bool:
    return sqlalchemy.inspect(engine).has_table(name)


def init_db() -> None:
    """Create all tables from SQLModel metadata if they do not exist."""
    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    _migrate_add_columns(engine)
