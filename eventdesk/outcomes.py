"""Typed results returned by the EventDesk services.

Service functions report expected failures as values rather than raising, so
callers (the HTTP layer, the CLI, the seeder) can branch on ``failure.kind``
without catching exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class FailureKind(str, Enum):
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    UNAUTHORIZED = "Unauthorized"
    REGISTRATION_CLOSED = "RegistrationClosed"
    CAPACITY = "Capacity"
    ALREADY_REGISTERED = "AlreadyRegistered"
    VALIDATION = "ValidationError"
    STORAGE = "StorageError"


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"error": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: T | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def kind(self) -> FailureKind | None:
        return self.failure.kind if self.failure else None


def success(value: T | None = None) -> Outcome[T]:
    return Outcome(value=value)


def fail(kind: FailureKind, message: str) -> Outcome:
    return Outcome(failure=Failure(kind, message))
