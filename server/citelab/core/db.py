from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from server.citelab.config import Settings


class Base(DeclarativeBase):
    pass


def sqlite_path(db_url: str) -> str | None:
    """Database file of a SQLite URL; None for other backends and in-memory DBs."""
    try:
        url = make_url(db_url)
    except Exception:
        return None
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:":
        return None
    return url.database


def _ensure_db_parent_dir(db_url: str) -> None:
    path = sqlite_path(db_url)
    parent = os.path.dirname(path) if path else ""
    if parent:
        os.makedirs(parent, exist_ok=True)


@lru_cache(maxsize=8)
def _engine_for(db_url: str, busy_timeout_ms: int) -> Engine:
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, pool_pre_ping=True)

    _ensure_db_parent_dir(db_url)
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False, "timeout": busy_timeout_ms / 1000.0},
        pool_pre_ping=True,
    )
    file_based = sqlite_path(db_url) is not None

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
            # WAL: cache writes on their own connections proceed while graph builds read.
            if file_based:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
        finally:
            cursor.close()

    return engine


@lru_cache(maxsize=8)
def _sessionmaker_for(db_url: str, busy_timeout_ms: int) -> sessionmaker[Session]:
    return sessionmaker(bind=_engine_for(db_url, busy_timeout_ms), autoflush=False, expire_on_commit=False)


def get_engine(settings: Settings) -> Engine:
    return _engine_for(settings.db_url, settings.db_busy_timeout_ms)


def get_sessionmaker(settings: Settings) -> sessionmaker[Session]:
    return _sessionmaker_for(settings.db_url, settings.db_busy_timeout_ms)


def init_db(settings: Settings) -> None:
    """Create missing tables straight from the models, bypassing migrations."""
    from server.citelab.core import models  # noqa: F401

    Base.metadata.create_all(get_engine(settings))


@contextmanager
def session_scope(settings: Settings, *, read_only: bool = False) -> Generator[Session, None, None]:
    """Yield a session that commits on success and rolls back on error.

    A ``read_only`` scope always rolls back, so a graph build never writes
    through it.
    """
    db = get_sessionmaker(settings)()
    try:
        yield db
        if read_only:
            db.rollback()
        else:
            db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
