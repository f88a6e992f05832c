"""FastAPI application for EventDesk."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import lifecycle, questions, registration
from .auth import authenticate, token_from_request
from .crud import (
    create_event,
    get_event_details,
    list_categories,
    search_events,
    update_event,
)
from .database import SessionLocal
from .models import Attendee, Event, Question, User
from .outcomes import Failure, FailureKind, Outcome
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .utils import parse_iso_datetime, utcnow

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

FAILURE_STATUS = {
    FailureKind.NOT_FOUND: 404,
    FailureKind.FORBIDDEN: 403,
    FailureKind.UNAUTHORIZED: 401,
    FailureKind.REGISTRATION_CLOSED: 403,
    FailureKind.CAPACITY: 403,
    FailureKind.ALREADY_REGISTERED: 403,
    FailureKind.VALIDATION: 400,
    FailureKind.STORAGE: 500,
}


class FailureResponse(Exception):
    """Raised inside request handlers to short-circuit with a typed failure."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure


def _unwrap(outcome: Outcome):
    if not outcome.ok:
        raise FailureResponse(outcome.failure)
    return outcome.value


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventdesk")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="EventDesk", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def current_user_id(request: Request, db: Session = Depends(get_db)) -> str:
    return _unwrap(authenticate(db, token_from_request(request)))


def optional_user_id(request: Request, db: Session = Depends(get_db)) -> str | None:
    outcome = authenticate(db, token_from_request(request))
    return outcome.value if outcome.ok else None


def _parse_datetime(name: str, raw: str | None) -> datetime | None:
    if raw is None:
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid {name}; use ISO8601 format"
        ) from exc


@app.exception_handler(FailureResponse)
async def failure_handler(request: Request, exc: FailureResponse):
    status = FAILURE_STATUS[exc.failure.kind]
    if status >= 500:
        logger.error(
            "%s on %s %s: %s",
            exc.failure.kind.value,
            request.method,
            request.url.path,
            exc.failure.message,
        )
    return JSONResponse(exc.failure.as_dict(), status_code=status)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse(
        {"error": FailureKind.STORAGE.value, "message": detail}, status_code=status
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {
            "error": FailureKind.VALIDATION.value,
            "message": "Some of the fields were invalid.",
            "detail": jsonable_encoder(exc.errors()),
        },
        status_code=400,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


# -------- payloads --------


class EventCreatePayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    location: str = ""
    start_time: str = Field(..., description="ISO datetime string")
    close_registration_time: str = Field(
        ..., description="ISO datetime string before start_time"
    )
    max_attendees: int = Field(..., ge=1, description="Seats including the creator")
    categories: list[str] = Field(default_factory=list)
    draft: bool = False


class EventUpdatePayload(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    location: str | None = None
    start_time: str | None = None
    close_registration_time: str | None = None
    max_attendees: int | None = Field(None, ge=1)
    categories: list[str] | None = None


class QuestionPayload(BaseModel):
    question: str


# -------- serializers --------


def _serialize_user(user: User | None):
    if user is None:
        return None
    return {
        "user_id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
    }


def _serialize_event(event: Event, *, now: datetime):
    return {
        "event_id": event.id,
        "name": event.name,
        "description": event.description,
        "location": event.location,
        "start_time": event.start_time.isoformat(),
        "close_registration_time": event.close_registration_time.isoformat(),
        "max_attendees": event.max_attendees,
        "state": lifecycle.effective_state(event, now).value,
        "classification": lifecycle.classify(event, now).value,
        "registration_open": lifecycle.is_registration_open(event, now),
        "categories": [category.name for category in event.categories],
        "creator": _serialize_user(event.creator),
    }


def _serialize_attendee(attendee: Attendee):
    return {
        "user_id": attendee.user_id,
        "first_name": attendee.user.first_name if attendee.user else None,
        "last_name": attendee.user.last_name if attendee.user else None,
        "registered_at": attendee.registered_at.isoformat(),
    }


def _serialize_question(question: Question):
    return {
        "question_id": question.id,
        "question": question.body,
        "votes": question.votes,
        "asked_by": _serialize_user(question.author),
        "created_at": question.created_at.isoformat(),
    }


# -------- routes --------


@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/categories")
def api_list_categories(db: Session = Depends(get_db)):
    return [
        {"category_id": category.id, "name": category.name}
        for category in list_categories(db)
    ]


@app.post("/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event = _unwrap(
        create_event(
            db,
            creator_id=user_id,
            name=payload.name,
            description=payload.description,
            location=payload.location,
            start_time=_parse_datetime("start_time", payload.start_time),
            close_registration_time=_parse_datetime(
                "close_registration_time", payload.close_registration_time
            ),
            max_attendees=payload.max_attendees,
            categories=payload.categories,
            draft=payload.draft,
        )
    )
    logger.info("Event %s created by %s", event.id, user_id)
    return {"event_id": event.id}


@app.get("/events/{event_id}")
def api_get_event(event_id: str, db: Session = Depends(get_db)):
    now = utcnow()
    details = _unwrap(get_event_details(db, event_id, now=now))
    payload = _serialize_event(details["event"], now=now)
    payload.update(
        {
            "number_attending": details["number_attending"],
            "seats_left": details["seats_left"],
            "attendees": [_serialize_attendee(a) for a in details["attendees"]],
            "questions": [_serialize_question(q) for q in details["questions"]],
        }
    )
    return payload


@app.patch("/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    fields = payload.model_dump(exclude_unset=True)
    for key in ("start_time", "close_registration_time"):
        if key in fields:
            fields[key] = _parse_datetime(key, fields[key])
    event = _unwrap(update_event(db, event_id, user_id, fields))
    return _serialize_event(event, now=utcnow())


@app.post("/events/{event_id}", status_code=201)
def api_register_attendance(
    event_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    registered = _unwrap(registration.register(db, event_id, user_id))
    return registered.as_dict()


@app.delete("/events/{event_id}")
def api_archive_event(
    event_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event = _unwrap(lifecycle.archive(db, event_id, user_id))
    return {"event_id": event.id, "state": event.status}


@app.post("/events/{event_id}/publish")
def api_publish_event(
    event_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event = _unwrap(lifecycle.publish(db, event_id, user_id))
    return {"event_id": event.id, "state": event.status}


@app.post("/events/{event_id}/close")
def api_close_registration(
    event_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    event = _unwrap(lifecycle.close_registration(db, event_id, user_id))
    return {"event_id": event.id, "state": event.status}


@app.get("/search")
def api_search_events(
    q: str | None = Query(None),
    status: str = Query("OPEN"),
    category: list[str] | None = Query(None),
    limit: int | None = Query(None),
    offset: int = Query(0),
    user_id: str | None = Depends(optional_user_id),
    db: Session = Depends(get_db),
):
    now = utcnow()
    result = _unwrap(
        search_events(
            db,
            q=q,
            status=status,
            categories=category or (),
            limit=limit,
            offset=offset,
            actor_id=user_id,
            now=now,
        )
    )
    return {
        "events": [_serialize_event(event, now=now) for event in result["events"]],
        "pagination": result["pagination"],
    }


@app.post("/events/{event_id}/question", status_code=201)
def api_ask_question(
    event_id: str,
    payload: QuestionPayload,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    question = _unwrap(questions.ask_question(db, event_id, user_id, payload.question))
    return {"question_id": question.id}


@app.delete("/question/{question_id}")
def api_delete_question(
    question_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    _unwrap(questions.delete_question(db, question_id, user_id))
    return {"question_id": question_id, "message": "Question deleted"}


@app.post("/question/{question_id}/vote")
def api_upvote_question(
    question_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    total = _unwrap(questions.upvote(db, question_id, user_id))
    return {"question_id": question_id, "votes": total}


@app.delete("/question/{question_id}/vote")
def api_downvote_question(
    question_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    total = _unwrap(questions.downvote(db, question_id, user_id))
    return {"question_id": question_id, "votes": total}
