from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.inspection import inspect
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from course_planner.config import settings


logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, future=True, connect_args=connect_args)


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC now; every timestamp column is stored naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def serialize(instance):
    return {c.key: getattr(instance, c.key) for c in inspect(instance).mapper.column_attrs}


# Additive columns introduced after the first schema; create_all() never alters existing tables.
RUNTIME_COLUMNS = {
    "requirements": {
        "course_options": "TEXT",
        "course_code": "TEXT",
        "priority": "INTEGER DEFAULT 3",
    },
    "scheduled_courses": {
        "position_index": "INTEGER DEFAULT 0",
        "requirement_id": "TEXT",
    },
    "schedule_shares": {
        "last_accessed": "DATETIME",
        "access_count": "INTEGER DEFAULT 0",
    },
}


def ensure_runtime_migrations(bind: Engine | None = None) -> None:
    bind = bind or engine
    if bind.dialect.name != "sqlite":
        return
    with bind.begin() as conn:
        for table, columns in RUNTIME_COLUMNS.items():
            cols = conn.execute(text(f"PRAGMA table_info({table})")).fetchall()
            if not cols:
                continue
            col_names = {c[1] for c in cols}
            for name, ddl in columns.items():
                if name not in col_names:
                    logger.info("Adding column %s.%s", table, name)
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))
