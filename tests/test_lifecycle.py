from __future__ import annotations

from datetime import timedelta

from eventdesk import lifecycle
from eventdesk.lifecycle import Classification, LifecycleState
from eventdesk.models import Event
from eventdesk.outcomes import FailureKind
from eventdesk.utils import utcnow


def test_archive_by_creator_sets_state_and_timestamp(session, make_user, make_event):
    creator = make_user()
    event = make_event(creator)

    outcome = lifecycle.archive(session, event.id, creator.id)
    session.commit()

    assert outcome.ok
    refreshed = session.get(Event, event.id, populate_existing=True)
    assert refreshed.status == "archived"
    assert refreshed.archived_at is not None
    assert lifecycle.classify(refreshed) is Classification.ARCHIVED


def test_archive_twice_is_idempotent(session, make_user, make_event):
    creator = make_user()
    event = make_event(creator)
    first = lifecycle.archive(session, event.id, creator.id)
    session.commit()
    archived_at = first.value.archived_at

    second = lifecycle.archive(session, event.id, creator.id)

    assert second.ok
    assert second.value.archived_at == archived_at


def test_archive_by_non_creator_is_forbidden(session, make_user, make_event):
    creator = make_user()
    stranger = make_user()
    event = make_event(creator)

    outcome = lifecycle.archive(session, event.id, stranger.id)

    assert outcome.kind is FailureKind.FORBIDDEN
    assert session.get(Event, event.id).status == "open"


def test_archive_missing_event_is_not_found(session, make_user):
    creator = make_user()
    assert lifecycle.archive(session, "nope", creator.id).kind is FailureKind.NOT_FOUND


def test_publish_moves_draft_to_open(session, make_user, make_event):
    creator = make_user()
    event = make_event(creator, draft=True)
    assert not lifecycle.is_registration_open(event)

    outcome = lifecycle.publish(session, event.id, creator.id)

    assert outcome.ok
    assert lifecycle.state_of(outcome.value) is LifecycleState.OPEN
    assert lifecycle.is_registration_open(outcome.value)


def test_publish_archived_event_is_forbidden(session, make_user, make_event):
    creator = make_user()
    event = make_event(creator)
    lifecycle.archive(session, event.id, creator.id)

    assert lifecycle.publish(session, event.id, creator.id).kind is FailureKind.FORBIDDEN


def test_close_registration_early(session, make_user, make_event):
    creator = make_user()
    event = make_event(creator)

    outcome = lifecycle.close_registration(session, event.id, creator.id)

    assert outcome.ok
    assert outcome.value.status == "closed"
    assert not lifecycle.is_registration_open(outcome.value)
    assert lifecycle.close_registration(session, event.id, creator.id).ok


def test_close_registration_on_draft_is_forbidden(session, make_user, make_event):
    creator = make_user()
    event = make_event(creator, draft=True)

    outcome = lifecycle.close_registration(session, event.id, creator.id)

    assert outcome.kind is FailureKind.FORBIDDEN


def test_effective_state_reports_closed_past_window(session, make_user, make_event):
    creator = make_user()
    event = make_event(creator, closes_in=timedelta(minutes=-5))

    assert event.status == "open"
    assert lifecycle.effective_state(event) is LifecycleState.CLOSED


def test_classify_boundary_at_close_time(session, make_user, make_event):
    creator = make_user()
    event = make_event(creator)
    close_time = event.close_registration_time

    assert lifecycle.classify(event, close_time) is Classification.OPEN
    assert not lifecycle.is_registration_open(event, close_time)
    assert (
        lifecycle.classify(event, close_time + timedelta(seconds=1))
        is Classification.ARCHIVED
    )


def test_sweep_closes_only_expired_open_events(session, make_user, make_event):
    creator = make_user()
    expired = make_event(creator, closes_in=timedelta(hours=-2))
    upcoming = make_event(creator)
    expired_draft = make_event(creator, closes_in=timedelta(hours=-2), draft=True)

    closed = lifecycle.sweep_expired_registrations(session, utcnow())
    session.commit()

    assert closed == 1
    assert session.get(Event, expired.id, populate_existing=True).status == "closed"
    assert session.get(Event, upcoming.id, populate_existing=True).status == "open"
    assert (
        session.get(Event, expired_draft.id, populate_existing=True).status == "draft"
    )
