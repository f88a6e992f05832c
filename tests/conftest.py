"""Shared pytest fixtures for EventDesk."""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventdesk import api, database, storage
from eventdesk.crud import create_event, create_user, ensure_categories
from eventdesk.models import Base
from eventdesk.utils import utcnow


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    storage.get_session = database.get_session
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    with database.get_session() as session:
        ensure_categories(session)
    yield
    database.SessionLocal.remove()


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_user(session):
    counter = {"n": 0}

    def _make(first_name: str = "Test", last_name: str = "User", email=None):
        counter["n"] += 1
        user = create_user(
            session,
            first_name=first_name,
            last_name=last_name,
            email=email or f"user{counter['n']}@example.com",
        )
        session.commit()
        return user

    return _make


@pytest.fixture()
def make_event(session):
    def _make(creator, *, max_attendees: int = 10, closes_in=timedelta(days=1), **kw):
        now = utcnow()
        close_time = now + closes_in
        outcome = create_event(
            session,
            creator_id=creator.id,
            name=kw.pop("name", "Community Meetup"),
            description=kw.pop("description", "Talks and snacks"),
            location=kw.pop("location", "Main Hall"),
            start_time=kw.pop("start_time", close_time + timedelta(hours=2)),
            close_registration_time=close_time,
            max_attendees=max_attendees,
            **kw,
        )
        assert outcome.ok, outcome.failure
        session.commit()
        return outcome.value

    return _make
