"""Event lifecycle: draft -> open -> closed -> archived."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from .models import Event
from .outcomes import Failure, FailureKind, Outcome, fail, success
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


class LifecycleState(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    ARCHIVED = "archived"


class Classification(str, Enum):
    OPEN = "OPEN"
    ARCHIVED = "ARCHIVED"


def state_of(event: Event) -> LifecycleState:
    return LifecycleState(event.status)


def is_registration_open(event: Event, now: datetime | None = None) -> bool:
    now = now or utcnow()
    if state_of(event) is not LifecycleState.OPEN:
        return False
    return now < event.close_registration_time


def effective_state(event: Event, now: datetime | None = None) -> LifecycleState:
    """Stored state, except an open event past its window reports CLOSED."""
    now = now or utcnow()
    state = state_of(event)
    if state is LifecycleState.OPEN and now >= event.close_registration_time:
        return LifecycleState.CLOSED
    return state


def classify(event: Event, now: datetime | None = None) -> Classification:
    now = now or utcnow()
    if state_of(event) is LifecycleState.ARCHIVED:
        return Classification.ARCHIVED
    if event.close_registration_time < now:
        return Classification.ARCHIVED
    return Classification.OPEN


def classification_clause(classification: Classification, now: datetime):
    """SQL counterpart of :func:`classify` for search filters."""
    archived = or_(
        Event.status == LifecycleState.ARCHIVED.value,
        Event.close_registration_time < now,
    )
    if classification is Classification.ARCHIVED:
        return archived
    return and_(
        Event.status != LifecycleState.ARCHIVED.value,
        Event.close_registration_time >= now,
    )


def authorize_mutation(event: Event, actor_id: str | None) -> Failure | None:
    if actor_id is None or actor_id != event.creator_id:
        return Failure(
            FailureKind.FORBIDDEN, "Only the event creator can change this event"
        )
    return None


def _load_for_mutation(session: Session, event_id: str, actor_id: str) -> Outcome[Event]:
    event = session.get(Event, event_id)
    if event is None:
        return fail(FailureKind.NOT_FOUND, "Event not found")
    denied = authorize_mutation(event, actor_id)
    if denied:
        return Outcome(failure=denied)
    return success(event)


def _transition(event: Event, target: LifecycleState, now: datetime) -> None:
    event.status = target.value
    event.last_modified = now
    if target is LifecycleState.ARCHIVED:
        event.archived_at = now


def archive(
    session: Session, event_id: str, actor_id: str, *, now: datetime | None = None
) -> Outcome[Event]:
    """Archive an event; archiving an archived event succeeds without changes."""
    loaded = _load_for_mutation(session, event_id, actor_id)
    if not loaded.ok:
        return loaded
    event = loaded.value
    if state_of(event) is LifecycleState.ARCHIVED:
        return success(event)
    _transition(event, LifecycleState.ARCHIVED, now or utcnow())
    session.flush()
    logger.info("Event %s archived by %s", event.id, actor_id)
    return success(event)


def publish(
    session: Session, event_id: str, actor_id: str, *, now: datetime | None = None
) -> Outcome[Event]:
    loaded = _load_for_mutation(session, event_id, actor_id)
    if not loaded.ok:
        return loaded
    event = loaded.value
    state = state_of(event)
    if state is LifecycleState.OPEN:
        return success(event)
    if state is not LifecycleState.DRAFT:
        return fail(
            FailureKind.FORBIDDEN, f"A {state.value} event cannot be published"
        )
    _transition(event, LifecycleState.OPEN, now or utcnow())
    session.flush()
    logger.info("Event %s published by %s", event.id, actor_id)
    return success(event)


def close_registration(
    session: Session, event_id: str, actor_id: str, *, now: datetime | None = None
) -> Outcome[Event]:
    loaded = _load_for_mutation(session, event_id, actor_id)
    if not loaded.ok:
        return loaded
    event = loaded.value
    state = state_of(event)
    if state is LifecycleState.CLOSED:
        return success(event)
    if state is not LifecycleState.OPEN:
        return fail(
            FailureKind.FORBIDDEN,
            f"Registration cannot be closed on a {state.value} event",
        )
    _transition(event, LifecycleState.CLOSED, now or utcnow())
    event.closed_early = True
    session.flush()
    logger.info("Registration closed early for event %s", event.id)
    return success(event)


def reopen_if_window_extended(event: Event, now: datetime | None = None) -> bool:
    """Reopen a sweep-closed event whose close time has moved past ``now``.

    Events the creator closed early stay closed.
    """
    now = now or utcnow()
    if state_of(event) is not LifecycleState.CLOSED or event.closed_early:
        return False
    if event.close_registration_time <= now:
        return False
    _transition(event, LifecycleState.OPEN, now)
    logger.info("Registration reopened for event %s", event.id)
    return True


def lock_event(session: Session, event_id: str, now: datetime) -> bool:
    """Write to the event row so the transaction holds its lock from here on.

    Returns ``False`` when no such event exists.
    """
    result = session.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(last_accessed=now, last_modified=Event.last_modified)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


def sweep_expired_registrations(session: Session, now: datetime | None = None) -> int:
    """Move every open event whose window has passed to CLOSED."""
    now = now or utcnow()
    result = session.execute(
        update(Event)
        .where(
            Event.status == LifecycleState.OPEN.value,
            Event.close_registration_time <= now,
        )
        .values(
            status=LifecycleState.CLOSED.value, closed_early=False, last_modified=now
        )
        .execution_options(synchronize_session=False)
    )
    changed = result.rowcount or 0
    if changed:
        logger.info("Registration sweep closed %d event(s)", changed)
    return changed
