"""
Service Results

Business-rule outcomes are returned, not raised:

    result = service.create(...)
    if result.is_err:
        ...  # result.error.kind / result.error.message
    credential = result.value

`unwrap()` converts an Err into a ServiceError for callers that prefer unwinding
(routers map ServiceError.kind to an HTTP status).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    FORBIDDEN = "FORBIDDEN"
    INVALID_STATE = "INVALID_STATE"
    INVALID_INPUT = "INVALID_INPUT"


class ServiceError(Exception):
    """Raised by Result.unwrap() on an Err."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class ErrorInfo:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    is_ok = True
    is_err = False

    @property
    def error(self) -> None:
        return None

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: ErrorInfo

    is_ok = False
    is_err = True

    @property
    def value(self) -> Any:
        raise ServiceError(self.error.kind, self.error.message)

    def unwrap(self) -> Any:
        raise ServiceError(self.error.kind, self.error.message)


Result = Union[Ok[T], Err]


def err(kind: ErrorKind, message: str) -> Err:
    return Err(ErrorInfo(kind, message))


def not_found(message: str) -> Err:
    return err(ErrorKind.NOT_FOUND, message)


def conflict(message: str) -> Err:
    return err(ErrorKind.CONFLICT, message)


def forbidden(message: str) -> Err:
    return err(ErrorKind.FORBIDDEN, message)


def invalid_state(message: str) -> Err:
    return err(ErrorKind.INVALID_STATE, message)


def invalid_input(message: str) -> Err:
    return err(ErrorKind.INVALID_INPUT, message)
