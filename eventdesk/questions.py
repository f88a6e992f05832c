"""Questions on events and at-most-once voting."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .ledger import attendance, votes
from .lifecycle import LifecycleState, state_of
from .models import Event, Question
from .outcomes import FailureKind, Outcome, fail, success
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

QUESTION_MIN_LENGTH = 5
QUESTION_MAX_LENGTH = 500
ALREADY_VOTED_MESSAGE = "You have already voted on this question"


def ask_question(
    session: Session, event_id: str, user_id: str, body: str
) -> Outcome[Question]:
    """Attach a question to an event; only the creator and attendees may ask."""
    cleaned = (body or "").strip()
    if not QUESTION_MIN_LENGTH <= len(cleaned) <= QUESTION_MAX_LENGTH:
        return fail(
            FailureKind.VALIDATION,
            f"Question must be between {QUESTION_MIN_LENGTH} and "
            f"{QUESTION_MAX_LENGTH} characters",
        )
    event = session.get(Event, event_id)
    if event is None:
        return fail(FailureKind.NOT_FOUND, "Event not found")
    if state_of(event) is LifecycleState.ARCHIVED:
        return fail(FailureKind.FORBIDDEN, "Questions are closed for archived events")
    if user_id != event.creator_id and not attendance.exists_for(
        session, event_id, user_id
    ):
        return fail(
            FailureKind.FORBIDDEN,
            "You cannot ask questions on events you are not registered for",
        )
    question = Question(event_id=event_id, author_id=user_id, body=cleaned, votes=0)
    session.add(question)
    session.flush()
    return success(question)


def delete_question(session: Session, question_id: str, user_id: str) -> Outcome[None]:
    question = session.get(Question, question_id)
    if question is None:
        return fail(FailureKind.NOT_FOUND, "Question not found")
    if user_id not in (question.author_id, question.event.creator_id):
        return fail(
            FailureKind.FORBIDDEN,
            "You can only delete your own questions or questions on your events",
        )
    votes.remove_all_for(session, question_id)
    session.execute(delete(Question).where(Question.id == question_id))
    session.flush()
    return success()


def _adjust_count(session: Session, question_id: str, delta: int) -> None:
    stmt = update(Question).where(Question.id == question_id)
    if delta < 0:
        stmt = stmt.where(Question.votes > 0)
    session.execute(
        stmt.values(votes=Question.votes + delta).execution_options(
            synchronize_session=False
        )
    )


def upvote(
    session: Session, question_id: str, user_id: str, *, now: datetime | None = None
) -> Outcome[int]:
    """Record one vote per user and commit; returns the new vote count."""
    if session.get(Question, question_id) is None:
        return fail(FailureKind.NOT_FOUND, "Question not found")
    try:
        inserted = votes.insert_if_absent(
            session, question_id, user_id, at=now or utcnow()
        )
        if not inserted:
            session.rollback()
            return fail(FailureKind.ALREADY_REGISTERED, ALREADY_VOTED_MESSAGE)
        _adjust_count(session, question_id, 1)
        session.commit()
    except IntegrityError:
        session.rollback()
        return fail(FailureKind.ALREADY_REGISTERED, ALREADY_VOTED_MESSAGE)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Storage failure recording vote on %s", question_id)
        return fail(FailureKind.STORAGE, "Failed to record vote")
    return success(_current_votes(session, question_id))


def downvote(session: Session, question_id: str, user_id: str) -> Outcome[int]:
    """Withdraw a previously cast vote and commit; returns the new vote count."""
    if session.get(Question, question_id) is None:
        return fail(FailureKind.NOT_FOUND, "Question not found")
    try:
        if not votes.remove(session, question_id, user_id):
            session.rollback()
            return fail(FailureKind.FORBIDDEN, "You have not voted on this question")
        _adjust_count(session, question_id, -1)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Storage failure removing vote on %s", question_id)
        return fail(FailureKind.STORAGE, "Failed to remove vote")
    return success(_current_votes(session, question_id))


def _current_votes(session: Session, question_id: str) -> int:
    question = session.get(Question, question_id, populate_existing=True)
    return question.votes if question else 0
