"""Session-token authentication."""

from __future__ import annotations

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import User
from .outcomes import FailureKind, Outcome, fail, success

TOKEN_HEADER = "x-authorization"


def token_from_request(request: Request) -> str | None:
    """Read the token from ``X-Authorization`` or an ``Authorization: Bearer`` header."""
    token = (request.headers.get(TOKEN_HEADER) or "").strip()
    if token:
        return token
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def authenticate(session: Session, token: str | None) -> Outcome[str]:
    if not token:
        return fail(FailureKind.UNAUTHORIZED, "Unauthorized")
    stmt = select(User.id).where(User.session_token == token)
    user_id = session.scalars(stmt).first()
    if user_id is None:
        return fail(FailureKind.UNAUTHORIZED, "Unauthorized")
    return success(user_id)
