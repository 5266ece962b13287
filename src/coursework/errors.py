"""
Error taxonomy for the coursework service.

`CourseworkError` subclasses are the failures request handlers surface to
callers; each carries an `ErrorKind` and an HTTP status. The `StoreError`
family is raised by store adapters and never reaches a caller directly: the
service layer translates it into `StoreFailure` / `StoreUnavailable`.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ACCESS_DENIED = "ACCESS_DENIED"
    NOT_FOUND = "NOT_FOUND"
    NOT_GRADABLE = "NOT_GRADABLE"
    ALREADY_GRADED = "ALREADY_GRADED"
    ALREADY_GRADED_BY_OTHER = "ALREADY_GRADED_BY_OTHER"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    STORE_ERROR = "STORE_ERROR"


class CourseworkError(Exception):
    kind = ErrorKind.STORE_ERROR
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.kind.value


class ValidationError(CourseworkError):
    kind = ErrorKind.VALIDATION_ERROR
    status_code = 400


class AccessDenied(CourseworkError):
    kind = ErrorKind.ACCESS_DENIED
    status_code = 403


class NotFound(CourseworkError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class NotGradable(CourseworkError):
    kind = ErrorKind.NOT_GRADABLE
    status_code = 409


class AlreadyGraded(CourseworkError):
    kind = ErrorKind.ALREADY_GRADED
    status_code = 409


class AlreadyGradedByOther(CourseworkError):
    kind = ErrorKind.ALREADY_GRADED_BY_OTHER
    status_code = 409


class ConcurrentModification(CourseworkError):
    kind = ErrorKind.CONCURRENT_MODIFICATION
    status_code = 409


class StoreUnavailable(CourseworkError):
    kind = ErrorKind.STORE_UNAVAILABLE
    status_code = 503


class StoreFailure(CourseworkError):
    kind = ErrorKind.STORE_ERROR
    status_code = 500


ERROR_BY_KIND = {
    cls.kind: cls
    for cls in (
        ValidationError,
        AccessDenied,
        NotFound,
        NotGradable,
        AlreadyGraded,
        AlreadyGradedByOther,
        ConcurrentModification,
        StoreUnavailable,
        StoreFailure,
    )
}


# Store adapter failures


class StoreError(Exception):
    """Generic store failure. `code` holds the backend error code, if any."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ResourceNotFound(StoreError):
    pass


class StoreAccessDenied(StoreError):
    pass


class ConditionFailed(StoreError):
    pass


class ThrottleExceeded(StoreError):
    pass


def translate_store_error(exc: StoreError) -> CourseworkError:
    """Map a store failure onto the caller-facing error without leaking details."""
    if isinstance(exc, ThrottleExceeded):
        return StoreUnavailable("The data store is temporarily unavailable, please retry")
    if isinstance(exc, ResourceNotFound):
        return StoreFailure("Data store resource not found", code="RESOURCE_NOT_FOUND")
    if isinstance(exc, StoreAccessDenied):
        return StoreFailure("Access denied to data store", code="STORE_ACCESS_DENIED")
    return StoreFailure("Failed to access data store")
