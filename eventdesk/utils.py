"""Utility helpers for EventDesk."""

from __future__ import annotations

from datetime import UTC, datetime
import secrets


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def parse_iso_datetime(raw: str) -> datetime:
    """Parse an ISO8601 string (a trailing ``Z`` is accepted) into naive UTC."""
    cleaned = (raw or "").strip()
    if cleaned.endswith("Z"):
        cleaned = f"{cleaned[:-1]}+00:00"
    return to_naive_utc(datetime.fromisoformat(cleaned))


def new_session_token() -> str:
    return secrets.token_urlsafe(32)
