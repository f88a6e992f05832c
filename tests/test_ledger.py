from __future__ import annotations

from datetime import timedelta

from eventdesk.ledger import attendance
from eventdesk.utils import utcnow


def test_insert_if_absent_writes_once(session, make_user, make_event):
    creator = make_user()
    guest = make_user()
    event = make_event(creator)
    now = utcnow()

    assert attendance.insert_if_absent(session, event.id, guest.id, at=now)
    assert not attendance.insert_if_absent(session, event.id, guest.id, at=now)
    session.commit()

    assert attendance.count_for(session, event.id) == 1
    assert attendance.exists_for(session, event.id, guest.id)


def test_guard_blocks_insert(session, make_user, make_event):
    creator = make_user()
    guest = make_user()
    event = make_event(creator, max_attendees=1)
    guard = attendance.count_subquery(event.id) < 0

    inserted = attendance.insert_if_absent(
        session, event.id, guest.id, at=utcnow(), guard=guard
    )

    assert not inserted
    assert attendance.count_for(session, event.id) == 0


def test_actors_listed_in_registration_order(session, make_user, make_event):
    creator = make_user()
    first = make_user()
    second = make_user()
    event = make_event(creator)
    now = utcnow()
    attendance.insert_if_absent(session, event.id, second.id, at=now)
    attendance.insert_if_absent(session, event.id, first.id, at=now - timedelta(days=1))

    assert attendance.actors_for(session, event.id) == [first.id, second.id]


def test_remove_and_remove_all(session, make_user, make_event):
    creator = make_user()
    guests = [make_user() for _ in range(3)]
    event = make_event(creator)
    for guest in guests:
        attendance.insert_if_absent(session, event.id, guest.id, at=utcnow())

    assert attendance.remove(session, event.id, guests[0].id)
    assert not attendance.remove(session, event.id, guests[0].id)
    assert attendance.remove_all_for(session, event.id) == 2
    assert attendance.count_for(session, event.id) == 0
