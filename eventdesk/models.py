"""SQLAlchemy models for EventDesk."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

DEFAULT_CATEGORIES = (
    "Conference",
    "Workshop",
    "Meetup",
    "Social",
    "Concert",
    "Exhibition",
    "Sports",
    "Other",
)


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


event_categories = Table(
    "event_categories",
    Base.metadata,
    Column(
        "event_id",
        String(36),
        ForeignKey("events.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "category_id",
        String(36),
        ForeignKey("categories.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    session_token = Column(String(128), nullable=True, unique=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(64), nullable=False, unique=True)


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_status_close", "status", "close_registration_time"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    location = Column(String(255), nullable=False, default="")
    start_time = Column(DateTime, nullable=False, index=True)
    close_registration_time = Column(DateTime, nullable=False)
    max_attendees = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="open")
    # True only when the creator closed registration by hand.
    closed_early = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)
    last_accessed = Column(DateTime, default=_now, nullable=False)

    creator = relationship("User")
    categories = relationship(
        "Category", secondary=event_categories, order_by="Category.name"
    )
    attendees = relationship(
        "Attendee",
        back_populates="event",
        order_by="Attendee.registered_at",
        passive_deletes=True,
    )
    questions = relationship(
        "Question",
        back_populates="event",
        order_by="desc(Question.votes)",
        passive_deletes=True,
    )


class Attendee(Base):
    __tablename__ = "attendees"

    event_id = Column(String(36), ForeignKey("events.id"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    registered_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="attendees")
    user = relationship("User")


class Question(Base):
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False)
    author_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    body = Column(Text, nullable=False)
    votes = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="questions")
    author = relationship("User")


class Vote(Base):
    __tablename__ = "votes"

    question_id = Column(String(36), ForeignKey("questions.id"), primary_key=True)
    voter_id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    voted_at = Column(DateTime, default=_now, nullable=False)
