"""Error kinds raised by the identity services.

Every error carries a ``kind`` the API layer maps to an HTTP status, and an
operation chain that records which public operations it travelled through.
Adding an operation never replaces the exception object, so callers can keep
using ``isinstance`` / ``except NotFoundError`` after any number of layers.
"""

import functools

from fastapi import status
from sqlalchemy.exc import SQLAlchemyError


class IdentityError(Exception):
    """Base exception for identity service errors."""

    kind = "internal"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, op: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.ops: list[str] = [op] if op else []

    def add_op(self, op: str) -> "IdentityError":
        # Outermost operation first, like "accept invitation: create account: ..."
        if not self.ops or self.ops[0] != op:
            self.ops.insert(0, op)
        return self

    @property
    def op(self) -> str | None:
        return self.ops[0] if self.ops else None

    def __str__(self) -> str:
        return ": ".join([*self.ops, self.message])


class NotFoundError(IdentityError):
    kind = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class AlreadyLinkedError(IdentityError):
    kind = "already_linked"
    http_status = status.HTTP_409_CONFLICT


class AlreadyExistsError(IdentityError):
    kind = "already_exists"
    http_status = status.HTTP_409_CONFLICT


class InvalidCredentialError(IdentityError):
    kind = "invalid_credential"
    http_status = status.HTTP_401_UNAUTHORIZED


class LockedError(IdentityError):
    kind = "locked"
    http_status = status.HTTP_423_LOCKED


class ExpiredError(IdentityError):
    kind = "expired"
    http_status = status.HTTP_410_GONE


class AlreadyAcceptedError(IdentityError):
    kind = "already_accepted"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "invitation has already been accepted", **kwargs):
        super().__init__(message, **kwargs)


class ValidationFailedError(IdentityError):
    kind = "validation_failed"
    http_status = status.HTTP_400_BAD_REQUEST


class InvitationInvalidError(IdentityError):
    kind = "invitation_invalid"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "invitation is no longer valid", **kwargs):
        super().__init__(message, **kwargs)


class StorageError(IdentityError):
    """A persistence failure that is not one of the domain kinds."""


# ── Specific signals ──────────────────────────────────────────

class PersonNotFoundError(NotFoundError):
    def __init__(self, message: str = "person not found", **kwargs):
        super().__init__(message, **kwargs)


class AccountNotFoundError(NotFoundError):
    def __init__(self, message: str = "account not found", **kwargs):
        super().__init__(message, **kwargs)


class StaffNotFoundError(NotFoundError):
    def __init__(self, message: str = "staff member not found", **kwargs):
        super().__init__(message, **kwargs)


class StudentNotFoundError(NotFoundError):
    def __init__(self, message: str = "student not found", **kwargs):
        super().__init__(message, **kwargs)


class GuardianNotFoundError(NotFoundError):
    def __init__(self, message: str = "guardian profile not found", **kwargs):
        super().__init__(message, **kwargs)


class InvitationNotFoundError(NotFoundError):
    def __init__(self, message: str = "invitation not found", **kwargs):
        super().__init__(message, **kwargs)


class RelationshipNotFoundError(NotFoundError):
    def __init__(self, message: str = "relationship not found", **kwargs):
        super().__init__(message, **kwargs)


class PhoneNumberNotFoundError(NotFoundError):
    def __init__(self, message: str = "phone number not found", **kwargs):
        super().__init__(message, **kwargs)


class NoAccountError(NotFoundError):
    def __init__(self, message: str = "staff member has no account", **kwargs):
        super().__init__(message, **kwargs)


class PINNotSetError(InvalidCredentialError):
    kind = "pin_not_set"

    def __init__(self, message: str = "staff member has no PIN set", **kwargs):
        super().__init__(message, **kwargs)


class InvalidPINError(InvalidCredentialError):
    kind = "invalid_pin"

    def __init__(self, message: str = "invalid PIN", **kwargs):
        super().__init__(message, **kwargs)


class AccountLockedError(LockedError):
    def __init__(self, message: str = "account is locked", **kwargs):
        super().__init__(message, **kwargs)


class PendingInvitationError(AlreadyExistsError):
    kind = "pending_invitation"

    def __init__(self, message: str = "guardian already has a pending invitation", **kwargs):
        super().__init__(message, **kwargs)


def operation(name: str):
    """Tag errors leaving a public service method with the operation name.

    Domain errors are re-raised unchanged apart from the added operation;
    raw SQLAlchemy errors become ``StorageError`` with the original chained.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except IdentityError as exc:
                exc.add_op(name)
                raise
            except SQLAlchemyError as exc:
                raise StorageError(str(exc), op=name) from exc
        return wrapper
    return decorator
