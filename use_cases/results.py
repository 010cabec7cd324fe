"""Tagged error values returned across adapter boundaries."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NO_INTERNET = "NO_INTERNET"
    CANCELLED = "CANCELLED"
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    WEAK_CREDENTIAL = "WEAK_CREDENTIAL"
    NOT_VERIFIED = "NOT_VERIFIED"
    STORE_FAILURE = "STORE_FAILURE"
    PRECONDITION = "PRECONDITION"
    UNKNOWN = "UNKNOWN"


# Unauthorized and InvalidCredential are the same outcome for callers.
UNAUTHORIZED = ErrorKind.INVALID_CREDENTIAL


@dataclass(frozen=True)
class IdentityError:
    """A failure reported by a backend or store, with optional backend detail."""

    kind: ErrorKind
    detail: str = ""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or an IdentityError, never both."""

    value: Optional[T] = None
    error: Optional[IdentityError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str = "") -> "Result[T]":
        return cls(error=IdentityError(kind=kind, detail=detail))
