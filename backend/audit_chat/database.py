"""
Engine, session factory and the two ways callers get a session:
get_db() for request-scoped FastAPI dependencies and get_db_context() for
work that outlives a request (streamed turns, scripts).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session

from .config import settings

logger = logging.getLogger(__name__)

DBFactory = Callable[[], ContextManager[Session]]


def _engine_options(dsn: str) -> Dict[str, Any]:
    if dsn.startswith("sqlite"):
        # FastAPI runs sync routes in a threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 20,
        "max_overflow": 30,
        "pool_pre_ping": True,   # drop connections the server closed
        "pool_recycle": 3600,
    }


engine = create_engine(
    settings.DATABASE_URL,
    future=True,
    echo=settings.SQL_ECHO,
    **_engine_options(settings.DATABASE_URL),
)

# expire_on_commit=False: rows stay readable after the orchestrator's mid-turn commits
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

from .models import Base  # noqa: E402,F401


@contextmanager
def get_db_context() -> Iterator[Session]:
    """Commit on clean exit, roll back and re-raise on error, always close."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        logger.error(f"Rolling back database session: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Iterator[Session]:
    """FastAPI dependency with the same commit/rollback rules as get_db_context()."""
    with get_db_context() as db:
        yield db


def redacted_dsn(dsn: str) -> str:
    try:
        return make_url(dsn).render_as_string(hide_password=True)
    except Exception:
        return "<unparsable DATABASE_URL>"


def log_where_am_i() -> None:
    """Startup log line naming the database in use (password hidden)."""
    logger.warning(f"Database: {redacted_dsn(settings.DATABASE_URL)} ({engine.dialect.name})")
