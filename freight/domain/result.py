"""
Typed results and the failure taxonomy.

Nothing in the orchestration core raises across its public boundary: every
operation returns a ``Result`` that is either a value or a ``Failure``
tagged with an ``ErrorKind``.  The API layer maps kinds to responses.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    EXTERNAL_SERVICE_FAILURE = "EXTERNAL_SERVICE_FAILURE"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str = ""

    @property
    def retryable(self) -> bool:
        """Only a lost optimistic-concurrency race is worth retrying."""
        return self.kind is ErrorKind.CONCURRENCY_CONFLICT


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str = "") -> "Result[T]":
        return cls(error=Failure(kind, message))

    @classmethod
    def from_failure(cls, failure: Failure) -> "Result[T]":
        return cls(error=failure)
