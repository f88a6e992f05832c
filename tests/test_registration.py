from __future__ import annotations

import threading
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from eventdesk import lifecycle
from eventdesk.crud import create_event, create_user
from eventdesk.database import build_engine
from eventdesk.ledger import attendance
from eventdesk.models import Base, Event
from eventdesk.outcomes import FailureKind
from eventdesk.registration import attendance_summary, register
from eventdesk.utils import utcnow


def test_register_records_attendance(session, make_user, make_event):
    creator = make_user()
    guest = make_user()
    event = make_event(creator, max_attendees=3)

    outcome = register(session, event.id, guest.id)

    assert outcome.ok
    assert outcome.value.event_id == event.id
    assert outcome.value.user_id == guest.id
    assert attendance.actors_for(session, event.id) == [guest.id]
    summary = attendance_summary(session, event)
    assert summary == {"number_attending": 2, "max_attendees": 3, "seats_left": 1}


def test_register_twice_is_already_registered(session, make_user, make_event):
    creator = make_user()
    guest = make_user()
    event = make_event(creator, max_attendees=5)

    assert register(session, event.id, guest.id).ok
    second = register(session, event.id, guest.id)

    assert second.kind is FailureKind.ALREADY_REGISTERED
    assert attendance.count_for(session, event.id) == 1


def test_creator_cannot_register(session, make_user, make_event):
    creator = make_user()
    event = make_event(creator)

    outcome = register(session, event.id, creator.id)

    assert outcome.kind is FailureKind.FORBIDDEN
    assert outcome.failure.message == "You are already registered"
    assert attendance.count_for(session, event.id) == 0


def test_unknown_event_is_not_found(session, make_user):
    guest = make_user()

    outcome = register(session, "missing-event", guest.id)

    assert outcome.kind is FailureKind.NOT_FOUND


def test_registration_rejected_after_close_time(session, make_user, make_event):
    creator = make_user()
    guest = make_user()
    event = make_event(creator, closes_in=timedelta(hours=-1))

    outcome = register(session, event.id, guest.id)

    assert outcome.kind is FailureKind.REGISTRATION_CLOSED
    assert attendance.count_for(session, event.id) == 0


def test_registration_rejected_at_exact_close_time(session, make_user, make_event):
    creator = make_user()
    guest = make_user()
    event = make_event(creator)

    outcome = register(session, event.id, guest.id, now=event.close_registration_time)

    assert outcome.kind is FailureKind.REGISTRATION_CLOSED


def test_registration_rejected_for_draft_and_archived(session, make_user, make_event):
    creator = make_user()
    guest = make_user()
    draft = make_event(creator, draft=True)
    archived = make_event(creator)
    assert lifecycle.archive(session, archived.id, creator.id).ok
    session.commit()

    assert register(session, draft.id, guest.id).kind is FailureKind.REGISTRATION_CLOSED
    assert (
        register(session, archived.id, guest.id).kind
        is FailureKind.REGISTRATION_CLOSED
    )


def test_single_seat_event_is_full_for_everyone(session, make_user, make_event):
    creator = make_user()
    guest = make_user()
    event = make_event(creator, max_attendees=1)

    assert register(session, event.id, guest.id).kind is FailureKind.CAPACITY
    assert register(session, event.id, creator.id).kind is FailureKind.FORBIDDEN
    assert attendance_summary(session, event)["number_attending"] == 1


def test_capacity_counts_the_creator(session, make_user, make_event):
    creator = make_user()
    first = make_user()
    second = make_user()
    event = make_event(creator, max_attendees=2)

    assert register(session, event.id, first.id).ok
    outcome = register(session, event.id, second.id)

    assert outcome.kind is FailureKind.CAPACITY
    assert outcome.failure.message == "Event is at capacity"
    assert attendance.count_for(session, event.id) == 1


def test_failed_registration_leaves_event_unchanged(session, make_user, make_event):
    creator = make_user()
    guest = make_user()
    event = make_event(creator, max_attendees=1)
    before = session.get(Event, event.id).last_modified

    register(session, event.id, guest.id)

    refreshed = session.get(Event, event.id, populate_existing=True)
    assert refreshed.last_modified == before
    assert refreshed.status == "open"


def test_integrity_error_without_row_is_storage_error(
    session, make_user, make_event, monkeypatch
):
    creator = make_user()
    guest = make_user()
    event = make_event(creator)

    def _foreign_key_violation(*args, **kwargs):
        raise IntegrityError(
            "INSERT INTO attendees", {}, Exception("FOREIGN KEY constraint failed")
        )

    monkeypatch.setattr(attendance, "insert_if_absent", _foreign_key_violation)

    outcome = register(session, event.id, guest.id)

    assert outcome.kind is FailureKind.STORAGE
    assert attendance.count_for(session, event.id) == 0


def test_concurrent_registrations_never_exceed_capacity(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)

    with factory() as setup:
        creator = create_user(
            setup, first_name="Host", last_name="One", email="host@example.com"
        )
        guests = [
            create_user(
                setup, first_name="Guest", last_name=str(i), email=f"g{i}@example.com"
            )
            for i in range(6)
        ]
        close_time = utcnow() + timedelta(hours=1)
        event = create_event(
            setup,
            creator_id=creator.id,
            name="Tiny Room",
            description="",
            location="",
            start_time=close_time + timedelta(hours=1),
            close_registration_time=close_time,
            max_attendees=3,
        ).value
        setup.commit()
        event_id = event.id
        guest_ids = [guest.id for guest in guests]

    barrier = threading.Barrier(len(guest_ids))
    results: dict[str, FailureKind | None] = {}
    lock = threading.Lock()

    def attempt(user_id: str) -> None:
        with factory() as worker_session:
            barrier.wait()
            outcome = register(worker_session, event_id, user_id)
            with lock:
                results[user_id] = outcome.kind

    threads = [threading.Thread(target=attempt, args=(uid,)) for uid in guest_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    successes = [uid for uid, kind in results.items() if kind is None]
    assert len(successes) == 2
    assert all(
        kind is FailureKind.CAPACITY for kind in results.values() if kind is not None
    )
    with factory() as check:
        assert attendance.count_for(check, event_id) == 2
    engine.dispose()
