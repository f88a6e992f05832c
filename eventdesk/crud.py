"""CRUD helpers for users, categories, and events."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from .config import settings
from .ledger import attendance, votes
from .lifecycle import (
    Classification,
    LifecycleState,
    authorize_mutation,
    classification_clause,
    effective_state,
    lock_event,
    reopen_if_window_extended,
    state_of,
)
from .models import DEFAULT_CATEGORIES, Attendee, Category, Event, Question, User
from .outcomes import FailureKind, Outcome, fail, success
from .utils import new_session_token, to_naive_utc, utcnow

UPDATABLE_EVENT_FIELDS = {
    "name",
    "description",
    "location",
    "start_time",
    "close_registration_time",
    "max_attendees",
    "categories",
}


class SearchStatus(str, Enum):
    OPEN = "OPEN"
    ARCHIVE = "ARCHIVE"
    MY_EVENTS = "MY_EVENTS"
    ATTENDING = "ATTENDING"


def _now() -> datetime:
    return utcnow()


# -------- users --------


def create_user(
    session: Session, *, first_name: str, last_name: str, email: str
) -> User:
    """Create a user with a fresh session token."""
    normalized_email = (email or "").strip().lower()
    if not normalized_email or "@" not in normalized_email:
        raise ValueError("Invalid email address")
    user = User(
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        email=normalized_email,
        session_token=new_session_token(),
    )
    session.add(user)
    session.flush()
    return user


def get_user_by_email(session: Session, email: str) -> User | None:
    stmt = select(User).where(User.email == (email or "").strip().lower())
    return session.scalars(stmt).first()


def rotate_session_token(session: Session, user: User) -> str:
    user.session_token = new_session_token()
    session.add(user)
    session.flush()
    return user.session_token


# -------- categories --------


def ensure_categories(session: Session, names: Iterable[str] = DEFAULT_CATEGORIES) -> int:
    """Insert any missing categories; returns how many were created."""
    existing = set(session.scalars(select(Category.name)).all())
    created = 0
    for name in names:
        if name in existing:
            continue
        session.add(Category(name=name))
        created += 1
    session.flush()
    return created


def list_categories(session: Session) -> Sequence[Category]:
    return session.scalars(select(Category).order_by(Category.name.asc())).all()


def _resolve_categories(
    session: Session, names: Iterable[str]
) -> Outcome[list[Category]]:
    wanted = {name.strip().lower(): name for name in names if name and name.strip()}
    if not wanted:
        return success([])
    known = {
        category.name.lower(): category
        for category in session.scalars(
            select(Category).where(func.lower(Category.name).in_(wanted.keys()))
        ).all()
    }
    missing = sorted(original for key, original in wanted.items() if key not in known)
    if missing:
        return fail(FailureKind.VALIDATION, f"Unknown categories: {', '.join(missing)}")
    return success(sorted(known.values(), key=lambda category: category.name))


# -------- events --------


def _validate_schedule(
    start_time: datetime, close_registration_time: datetime, max_attendees: int
) -> str | None:
    if close_registration_time >= start_time:
        return "Registration must close before the event starts"
    if max_attendees is None or int(max_attendees) < 1:
        return "max_attendees must be at least 1"
    return None


def create_event(
    session: Session,
    *,
    creator_id: str,
    name: str,
    description: str,
    location: str,
    start_time: datetime,
    close_registration_time: datetime,
    max_attendees: int,
    categories: Iterable[str] = (),
    draft: bool = False,
) -> Outcome[Event]:
    """Create and persist a new event owned by ``creator_id``."""
    normalized_start = to_naive_utc(start_time)
    normalized_close = to_naive_utc(close_registration_time)
    problem = _validate_schedule(normalized_start, normalized_close, max_attendees)
    if problem:
        return fail(FailureKind.VALIDATION, problem)
    resolved = _resolve_categories(session, categories)
    if not resolved.ok:
        return resolved

    event = Event(
        creator_id=creator_id,
        name=name.strip(),
        description=description or "",
        location=location or "",
        start_time=normalized_start,
        close_registration_time=normalized_close,
        max_attendees=int(max_attendees),
        status=(LifecycleState.DRAFT if draft else LifecycleState.OPEN).value,
        categories=resolved.value,
    )
    session.add(event)
    session.flush()
    return success(event)


def get_event(session: Session, event_id: str) -> Event | None:
    return session.get(Event, event_id)


def get_event_details(
    session: Session, event_id: str, *, now: datetime | None = None
) -> Outcome[dict[str, Any]]:
    """Compose the event with its creator, attendees, counts and questions."""
    event = session.get(Event, event_id)
    if event is None:
        return fail(FailureKind.NOT_FOUND, "Event not found")
    now = now or _now()
    attendees = session.scalars(
        select(Attendee)
        .where(Attendee.event_id == event.id)
        .options(selectinload(Attendee.user))
        .order_by(Attendee.registered_at.asc())
    ).all()
    number_attending = len(attendees) + 1
    return success(
        {
            "event": event,
            "state": effective_state(event, now),
            "number_attending": number_attending,
            "seats_left": max(event.max_attendees - number_attending, 0),
            "attendees": attendees,
            "questions": list(event.questions),
        }
    )


def update_event(
    session: Session,
    event_id: str,
    actor_id: str,
    fields: dict[str, Any],
    *,
    now: datetime | None = None,
) -> Outcome[Event]:
    """Apply a partial update; keys absent from ``fields`` are left untouched."""
    event = session.get(Event, event_id)
    if event is None:
        return fail(FailureKind.NOT_FOUND, "Event not found")
    denied = authorize_mutation(event, actor_id)
    if denied:
        return Outcome(failure=denied)
    if state_of(event) is LifecycleState.ARCHIVED:
        return fail(FailureKind.FORBIDDEN, "Archived events cannot be edited")

    unknown = set(fields) - UPDATABLE_EVENT_FIELDS
    if unknown:
        return fail(
            FailureKind.VALIDATION, f"Unknown fields: {', '.join(sorted(unknown))}"
        )

    now = now or _now()
    # Serialize against concurrent registrations before reading the count.
    lock_event(session, event.id, now)
    session.refresh(event)

    start_time = to_naive_utc(fields.get("start_time") or event.start_time)
    close_time = to_naive_utc(
        fields.get("close_registration_time") or event.close_registration_time
    )
    max_attendees = fields.get("max_attendees")
    if max_attendees is None:
        max_attendees = event.max_attendees
    problem = _validate_schedule(start_time, close_time, max_attendees)
    if problem:
        return fail(FailureKind.VALIDATION, problem)
    number_attending = attendance.count_for(session, event.id) + 1
    if int(max_attendees) < number_attending:
        return fail(
            FailureKind.VALIDATION,
            f"max_attendees cannot be lower than the {number_attending} "
            "people already attending",
        )

    if "categories" in fields:
        resolved = _resolve_categories(session, fields["categories"] or ())
        if not resolved.ok:
            return resolved
        event.categories = resolved.value
    for key in ("name", "description", "location"):
        if key in fields and fields[key] is not None:
            setattr(event, key, fields[key])
    event.start_time = start_time
    event.close_registration_time = close_time
    event.max_attendees = int(max_attendees)
    event.last_modified = now
    reopen_if_window_extended(event, now)
    session.add(event)
    session.flush()
    return success(event)


def _search_clause(query: str | None):
    if not query:
        return None
    pattern = f"%{query.strip()}%"
    return or_(
        Event.name.ilike(pattern),
        Event.description.ilike(pattern),
        Event.location.ilike(pattern),
    )


def search_events(
    session: Session,
    *,
    q: str | None = None,
    status: SearchStatus | str = SearchStatus.OPEN,
    categories: Iterable[str] = (),
    limit: int | None = None,
    offset: int = 0,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> Outcome[dict[str, Any]]:
    """Search events newest-start first with status, text and category filters."""
    limit = settings.search_default_limit if limit is None else limit
    if not 1 <= limit <= settings.search_max_limit:
        return fail(
            FailureKind.VALIDATION,
            f"limit must be between 1 and {settings.search_max_limit}",
        )
    if offset < 0:
        return fail(FailureKind.VALIDATION, "offset must be 0 or greater")
    try:
        status = SearchStatus(status)
    except ValueError:
        return fail(
            FailureKind.VALIDATION,
            "status must be one of " + ", ".join(s.value for s in SearchStatus),
        )
    if status in (SearchStatus.MY_EVENTS, SearchStatus.ATTENDING) and actor_id is None:
        return fail(FailureKind.UNAUTHORIZED, "Sign in to filter by your events")

    now = now or _now()
    filters = []
    text_clause = _search_clause(q)
    if text_clause is not None:
        filters.append(text_clause)
    wanted_categories = [c.strip().lower() for c in categories if c and c.strip()]
    if wanted_categories:
        filters.append(
            Event.categories.any(func.lower(Category.name).in_(wanted_categories))
        )
    if status is SearchStatus.MY_EVENTS:
        filters.append(Event.creator_id == actor_id)
    elif status is SearchStatus.ATTENDING:
        filters.append(
            Event.id.in_(
                select(Attendee.event_id).where(Attendee.user_id == actor_id)
            )
        )
    else:
        filters.append(Event.status != LifecycleState.DRAFT.value)
        classification = (
            Classification.OPEN
            if status is SearchStatus.OPEN
            else Classification.ARCHIVED
        )
        filters.append(classification_clause(classification, now))

    count_stmt = select(func.count()).select_from(Event).where(*filters)
    total = session.scalar(count_stmt) or 0
    stmt = (
        select(Event)
        .where(*filters)
        .options(selectinload(Event.creator), selectinload(Event.categories))
        .order_by(Event.start_time.desc(), Event.id.asc())
        .offset(offset)
        .limit(limit)
    )
    events = session.scalars(stmt).all()
    return success(
        {
            "events": events,
            "pagination": {"limit": limit, "offset": offset, "total": total},
        }
    )


def delete_event(session: Session, event_id: str, actor_id: str) -> Outcome[int]:
    """Hard-delete an event with its attendance, questions and votes.

    Returns the number of attendance rows removed.
    """
    event = session.get(Event, event_id)
    if event is None:
        return fail(FailureKind.NOT_FOUND, "Event not found")
    denied = authorize_mutation(event, actor_id)
    if denied:
        return Outcome(failure=denied)
    question_ids = session.scalars(
        select(Question.id).where(Question.event_id == event_id)
    ).all()
    for question_id in question_ids:
        votes.remove_all_for(session, question_id)
    session.execute(delete(Question).where(Question.event_id == event_id))
    removed = attendance.remove_all_for(session, event_id)
    session.expire(event, ["attendees", "questions"])
    event.categories = []
    session.delete(event)
    session.flush()
    return success(removed)
