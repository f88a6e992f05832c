"""Database helpers for EventDesk."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings

DATABASE_URL = f"sqlite:///{settings.database_path}"


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine; SQLite writers wait on the busy timeout instead of failing."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": settings.sqlite_busy_timeout,
        }
    return create_engine(url, connect_args=connect_args, future=True, **kwargs)


def build_session_factory(bind: Engine) -> scoped_session:
    return scoped_session(
        sessionmaker(
            bind=bind,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )


engine = build_engine(DATABASE_URL)
SessionLocal = build_session_factory(engine)


@contextmanager
def get_session():
    """Context manager returning a SQLAlchemy session."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
