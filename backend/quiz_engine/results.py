from __future__ import annotations

from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class StoreUnavailableError(Exception):
    """A backing store did not answer in time or could not be reached."""


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    PRECONDITION = "precondition"
    VALIDATION = "validation"
    UNAVAILABLE = "unavailable"


class Failure(BaseModel):
    kind: ErrorKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.UNAVAILABLE


class Result(BaseModel, Generic[T]):
    """Outcome of a controller operation: either ``value`` or ``error`` is set."""

    value: Optional[T] = None
    error: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Result[T]":
        return cls(error=Failure(kind=kind, message=message))

    @classmethod
    def not_found(cls, message: str) -> "Result[T]":
        return cls.failure(ErrorKind.NOT_FOUND, message)

    @classmethod
    def precondition(cls, message: str) -> "Result[T]":
        return cls.failure(ErrorKind.PRECONDITION, message)

    @classmethod
    def invalid(cls, message: str) -> "Result[T]":
        return cls.failure(ErrorKind.VALIDATION, message)

    @classmethod
    def unavailable(cls, message: str) -> "Result[T]":
        return cls.failure(ErrorKind.UNAVAILABLE, message)
