"""Error taxonomy shared by the import workflow, the stores, and the API."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class ErrorKind(str, Enum):
    """Structured error category carried on every :class:`NpaTrackError`."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INTERNAL = "internal"


class NpaTrackError(Exception):
    """Base exception for all npatrack errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(NpaTrackError):
    """Raised when required fields are missing or malformed."""

    kind = ErrorKind.VALIDATION


class ConflictError(NpaTrackError):
    """Raised when a unique key (record id or account number) collides."""

    kind = ErrorKind.CONFLICT


class NotFoundError(NpaTrackError):
    """Raised when an operation targets a record that does not exist."""

    kind = ErrorKind.NOT_FOUND


class AuthorizationError(NpaTrackError):
    """Raised on role or branch mismatch."""

    kind = ErrorKind.UNAUTHORIZED


class AssignmentError(NpaTrackError):
    """Raised when the assign phase is rejected after a successful create.

    The records named in ``created_ids`` exist but are still unassigned, so the
    caller can retry the assignment alone.
    """

    def __init__(
        self,
        message: str,
        *,
        owner_id: str,
        created_ids: Sequence[str] = (),
        status_code: int | None = None,
        kind: ErrorKind = ErrorKind.INTERNAL,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.owner_id = owner_id
        self.created_ids = list(created_ids)
        self.kind = kind


_KIND_TO_ERROR: dict[ErrorKind, type[NpaTrackError]] = {
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.UNAUTHORIZED: AuthorizationError,
    ErrorKind.INTERNAL: NpaTrackError,
}


def error_for_kind(kind: str | None, message: str) -> NpaTrackError:
    """Rebuild the exception matching a serialized error envelope."""

    try:
        resolved = ErrorKind(kind) if kind else ErrorKind.INTERNAL
    except ValueError:
        resolved = ErrorKind.INTERNAL
    return _KIND_TO_ERROR[resolved](message)


__all__ = [
    "ErrorKind",
    "NpaTrackError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "AuthorizationError",
    "AssignmentError",
    "error_for_kind",
]
