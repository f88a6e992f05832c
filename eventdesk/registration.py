"""Attendance registration: the only write path into the attendance ledger.

``register`` runs as its own transaction. It opens with a write to the event
row, which takes the row lock on PostgreSQL and the database write lock on
SQLite, so concurrent registrations for the same event queue up behind it.
The ledger insert then re-validates lifecycle state, the registration window,
capacity and uniqueness inside the statement itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .ledger import attendance
from .lifecycle import LifecycleState, is_registration_open, lock_event
from .models import Event
from .outcomes import Failure, FailureKind, Outcome, fail, success
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

ALREADY_REGISTERED_MESSAGE = "You are already registered"


@dataclass(frozen=True)
class Registration:
    event_id: str
    user_id: str
    registered_at: datetime

    def as_dict(self) -> dict[str, str]:
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "registered_at": self.registered_at.isoformat(),
        }


def attendance_summary(session: Session, event: Event) -> dict[str, int]:
    """Counts for an event; the creator always holds one seat."""
    number_attending = attendance.count_for(session, event.id) + 1
    return {
        "number_attending": number_attending,
        "max_attendees": event.max_attendees,
        "seats_left": max(event.max_attendees - number_attending, 0),
    }


def _seat_guard(event_id: str, now: datetime):
    taken = attendance.count_subquery(event_id)
    return (
        select(Event.id)
        .where(
            Event.id == event_id,
            Event.status == LifecycleState.OPEN.value,
            Event.close_registration_time > now,
            taken + 1 < Event.max_attendees,
        )
        .correlate(None)
        .exists()
    )


def _check_eligibility(
    session: Session, event: Event, user_id: str, now: datetime
) -> Failure | None:
    if user_id == event.creator_id:
        return Failure(FailureKind.FORBIDDEN, ALREADY_REGISTERED_MESSAGE)
    if not is_registration_open(event, now):
        return Failure(FailureKind.REGISTRATION_CLOSED, "Registration is closed")
    if attendance.count_for(session, event.id) + 1 >= event.max_attendees:
        return Failure(FailureKind.CAPACITY, "Event is at capacity")
    if attendance.exists_for(session, event.id, user_id):
        return Failure(FailureKind.ALREADY_REGISTERED, ALREADY_REGISTERED_MESSAGE)
    return None


def _rejected(session: Session, failure: Failure, event_id: str, user_id: str):
    session.rollback()
    logger.info(
        "Registration of %s for event %s rejected: %s",
        user_id,
        event_id,
        failure.kind.value,
    )
    return Outcome(failure=failure)


def register(
    session: Session, event_id: str, user_id: str, *, now: datetime | None = None
) -> Outcome[Registration]:
    """Reserve a seat for ``user_id`` and commit, or return a typed failure."""
    now = now or utcnow()
    try:
        if not lock_event(session, event_id, now):
            return _rejected(
                session,
                Failure(FailureKind.NOT_FOUND, "Event not found"),
                event_id,
                user_id,
            )
        event = session.get(Event, event_id, populate_existing=True)
        failure = _check_eligibility(session, event, user_id, now)
        if failure:
            return _rejected(session, failure, event_id, user_id)

        inserted = attendance.insert_if_absent(
            session, event_id, user_id, at=now, guard=_seat_guard(event_id, now)
        )
        if not inserted:
            failure = _check_eligibility(session, event, user_id, now) or Failure(
                FailureKind.CAPACITY, "Event is at capacity"
            )
            return _rejected(session, failure, event_id, user_id)
        session.commit()
    except IntegrityError:
        session.rollback()
        if attendance.exists_for(session, event_id, user_id):
            return fail(FailureKind.ALREADY_REGISTERED, ALREADY_REGISTERED_MESSAGE)
        logger.exception(
            "Integrity failure registering %s for event %s", user_id, event_id
        )
        return fail(FailureKind.STORAGE, "Failed to register for event")
    except SQLAlchemyError:
        session.rollback()
        logger.exception(
            "Storage failure registering %s for event %s", user_id, event_id
        )
        return fail(FailureKind.STORAGE, "Failed to register for event")

    logger.info("Registered %s for event %s", user_id, event_id)
    return success(Registration(event_id=event_id, user_id=user_id, registered_at=now))
