# src/educrm/core/errors.py
from __future__ import annotations

import enum
from typing import Any, Optional

from fastapi import status


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    DUPLICATE_ENTRY = "duplicate_entry"
    RESOURCE_IN_USE = "resource_in_use"
    INVALID_OPERATION = "invalid_operation"
    TOO_MANY_REQUESTS = "too_many_requests"
    DATABASE_ERROR = "database_error"
    INTERNAL = "internal"


# kind -> (machine code, http status)
_KIND_TABLE: dict[ErrorKind, tuple[str, int]] = {
    ErrorKind.VALIDATION: ("VALIDATION_ERROR", status.HTTP_400_BAD_REQUEST),
    ErrorKind.BAD_REQUEST: ("BAD_REQUEST", status.HTTP_400_BAD_REQUEST),
    ErrorKind.UNAUTHORIZED: ("UNAUTHORIZED", status.HTTP_401_UNAUTHORIZED),
    ErrorKind.FORBIDDEN: ("FORBIDDEN", status.HTTP_403_FORBIDDEN),
    ErrorKind.NOT_FOUND: ("NOT_FOUND", status.HTTP_404_NOT_FOUND),
    ErrorKind.CONFLICT: ("CONFLICT", status.HTTP_409_CONFLICT),
    ErrorKind.CAPACITY_EXCEEDED: ("CAPACITY_EXCEEDED", status.HTTP_409_CONFLICT),
    ErrorKind.DUPLICATE_ENTRY: ("DUPLICATE_ENTRY", status.HTTP_409_CONFLICT),
    ErrorKind.RESOURCE_IN_USE: ("RESOURCE_IN_USE", status.HTTP_409_CONFLICT),
    ErrorKind.INVALID_OPERATION: ("INVALID_OPERATION", status.HTTP_409_CONFLICT),
    ErrorKind.TOO_MANY_REQUESTS: ("TOO_MANY_REQUESTS", status.HTTP_429_TOO_MANY_REQUESTS),
    ErrorKind.DATABASE_ERROR: ("DATABASE_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR),
    ErrorKind.INTERNAL: ("INTERNAL_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR),
}


def code_for(kind: ErrorKind) -> str:
    return _KIND_TABLE[kind][0]


def status_for(kind: ErrorKind) -> int:
    return _KIND_TABLE[kind][1]


class AppError(Exception):
    """A typed failure raised by the cores and translated at the HTTP edge."""

    def __init__(self, kind: ErrorKind, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    @property
    def code(self) -> str:
        return code_for(self.kind)

    @property
    def status_code(self) -> int:
        return status_for(self.kind)

    def __repr__(self) -> str:
        return f"AppError({self.kind.value!r}, {self.message!r})"


def validation(message: str, details: Any = None) -> AppError:
    return AppError(ErrorKind.VALIDATION, message, details)


def bad_request(message: str, details: Any = None) -> AppError:
    return AppError(ErrorKind.BAD_REQUEST, message, details)


def unauthorized(message: str = "Authentication required") -> AppError:
    return AppError(ErrorKind.UNAUTHORIZED, message)


def forbidden(message: str = "Insufficient permissions") -> AppError:
    return AppError(ErrorKind.FORBIDDEN, message)


def not_found(resource: str) -> AppError:
    return AppError(ErrorKind.NOT_FOUND, f"{resource} not found")


def conflict(message: str, details: Any = None) -> AppError:
    return AppError(ErrorKind.CONFLICT, message, details)


def capacity_exceeded(message: str, details: Any = None) -> AppError:
    return AppError(ErrorKind.CAPACITY_EXCEEDED, message, details)


def duplicate_entry(message: str, details: Any = None) -> AppError:
    return AppError(ErrorKind.DUPLICATE_ENTRY, message, details)


def resource_in_use(message: str, details: Any = None) -> AppError:
    return AppError(ErrorKind.RESOURCE_IN_USE, message, details)


def invalid_operation(message: str, details: Any = None) -> AppError:
    return AppError(ErrorKind.INVALID_OPERATION, message, details)


def too_many_requests(message: str = "Rate limit exceeded") -> AppError:
    return AppError(ErrorKind.TOO_MANY_REQUESTS, message)


def internal(message: str = "Internal server error") -> AppError:
    return AppError(ErrorKind.INTERNAL, message)


__all__ = [
    "AppError",
    "ErrorKind",
    "code_for",
    "status_for",
    "validation",
    "bad_request",
    "unauthorized",
    "forbidden",
    "not_found",
    "conflict",
    "capacity_exceeded",
    "duplicate_entry",
    "resource_in_use",
    "invalid_operation",
    "too_many_requests",
    "internal",
]
