"""Exception hierarchy raised by the domain services."""
from __future__ import annotations


class SchoolDeskError(Exception):
    """Base class for expected, user-reportable failures."""


class ValidationError(SchoolDeskError, ValueError):
    """A required field is missing or a value is out of range."""


class AuthenticationError(SchoolDeskError):
    """Unknown user, wrong secret or no authenticated actor."""


class PermissionDenied(SchoolDeskError):
    """The actor's role does not allow the operation."""


class NotFoundError(SchoolDeskError, LookupError):
    pass


class DuplicatePaymentError(ValidationError):
    pass


class InvalidTransition(SchoolDeskError):
    """A workflow record was asked to leave a terminal state."""


class RemoteStoreError(SchoolDeskError):
    """Wraps any failure talking to the remote database."""

    def __init__(self, message: str, *, table_name: str | None = None, record_id: str | None = None):
        super().__init__(message)
        self.table_name = table_name
        self.record_id = record_id


__all__ = [
    "AuthenticationError",
    "DuplicatePaymentError",
    "InvalidTransition",
    "NotFoundError",
    "PermissionDenied",
    "RemoteStoreError",
    "SchoolDeskError",
    "ValidationError",
]
