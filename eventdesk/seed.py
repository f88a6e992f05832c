"""Development helpers for populating fake users, events and registrations."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import create_event, create_user
from .database import get_session
from .models import DEFAULT_CATEGORIES, Event, User
from .registration import register
from .storage import init_db
from .utils import utcnow

_event_types = [
    "Summit",
    "Workshop",
    "Meetup",
    "Hack Night",
    "Mixer",
    "Panel",
    "Showcase",
    "Tournament",
]


def seed_fake_data(
    *,
    user_count: int = 10,
    event_count: int = 8,
    draft_percentage: int = 10,
) -> dict[str, int]:
    """Populate the database with synthetic users, events and registrations."""
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if not 0 <= draft_percentage <= 100:
        raise ValueError("draft_percentage must be between 0 and 100")

    init_db()
    fake = Faker()
    stats = {"users": 0, "events": 0, "registrations": 0}

    with get_session() as session:
        users = [_create_user(session, fake) for _ in range(user_count)]
        session.commit()
        stats["users"] = len(users)

        events = []
        for _ in range(event_count):
            event = _create_event(
                session, fake, random.choice(users), draft_percentage
            )
            if event is not None:
                events.append(event)
        session.commit()
        stats["events"] = len(events)

        for event in events:
            stats["registrations"] += _register_attendees(session, event, users)

    return stats


def _create_user(session: Session, fake: Faker) -> User:
    return create_user(
        session,
        first_name=fake.first_name(),
        last_name=fake.last_name(),
        email=fake.unique.email(),
    )


def _create_event(
    session: Session, fake: Faker, creator: User, draft_percentage: int
) -> Event | None:
    start_time = _random_start_time()
    close_time = start_time - timedelta(hours=random.randint(1, 72))
    outcome = create_event(
        session,
        creator_id=creator.id,
        name=f"{fake.city()} {random.choice(_event_types)}",
        description="\n\n".join(fake.paragraphs(nb=2)),
        location=fake.address().replace("\n", ", "),
        start_time=start_time,
        close_registration_time=close_time,
        max_attendees=random.randint(2, 12),
        categories=random.sample(DEFAULT_CATEGORIES, k=random.randint(1, 2)),
        draft=random.randint(1, 100) <= draft_percentage,
    )
    return outcome.value if outcome.ok else None


def _random_start_time() -> datetime:
    day_offset = random.randint(-7, 30)
    minute_offset = random.randint(0, 23 * 60)
    return utcnow() + timedelta(days=day_offset, minutes=minute_offset)


def _register_attendees(session: Session, event: Event, users: list[User]) -> int:
    """Register a random subset of users; full, closed and draft events reject."""
    candidates = [user for user in users if user.id != event.creator_id]
    random.shuffle(candidates)
    registered = 0
    for user in candidates[: random.randint(0, len(candidates))]:
        if register(session, event.id, user.id).ok:
            registered += 1
    return registered
