"""
Error taxonomy for console operations.

Every failure that reaches a caller is a ``ConsoleError`` carrying exactly one
user-displayable sentence. Storage-level failures are classified on the way
out by :func:`store_errors` so raw driver text never leaks.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError

log = structlog.get_logger()

GENERIC_FAILURE = "Something went wrong. Please try again."

# Postgres SQLSTATEs
UNIQUE_VIOLATION = "23505"
INSUFFICIENT_PRIVILEGE = "42501"  # raised by row-level security


class ConsoleError(Exception):
    """Base class for failures surfaced to the caller."""

    status_code: int = 400

    def __init__(self, message: str = GENERIC_FAILURE, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ConsoleError):
    status_code = 422


class AuthenticationRequired(ConsoleError):
    status_code = 401

    def __init__(self, message: str = "You must be logged in"):
        super().__init__(message)


class PermissionDenied(ConsoleError):
    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class DuplicateInvitation(ConsoleError):
    status_code = 409

    def __init__(self, message: str = "Invitation already sent"):
        super().__init__(message)


class NotFound(ConsoleError):
    status_code = 404


class ProvisioningFailed(ConsoleError):
    status_code = 502


class ConflictError(ConsoleError):
    status_code = 409


class TransportError(ConsoleError):
    """Notification delivery failed. Logged by the mailer, never raised to callers."""

    status_code = 502


class StoreFailure(ConsoleError):
    """The store failed for a reason the caller cannot act on."""

    status_code = 500

    def __init__(self, message: str = GENERIC_FAILURE):
        super().__init__(message)


class PolicyViolation(Exception):
    """Raised by a store when the caller fails its row-level access policy."""

    def __init__(self, table: str, action: str):
        super().__init__(f"row-level policy rejected {action} on {table}")
        self.table = table
        self.action = action


def _sqlstate(exc: DBAPIError):
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    if _sqlstate(exc) == UNIQUE_VIOLATION:
        return True
    return "unique" in str(orig).lower()


def is_policy_rejection(exc: DBAPIError) -> bool:
    """Whether the database refused the row under a row-level security policy."""
    if _sqlstate(exc) == INSUFFICIENT_PRIVILEGE:
        return True
    return "row-level security" in str(getattr(exc, "orig", "")).lower()


@contextmanager
def store_errors(
    *,
    permission_message: Optional[str] = None,
    conflict_message: str = "This record already exists",
) -> Iterator[None]:
    """Translate store-level failures into console errors."""
    try:
        yield
    except ConsoleError:
        raise
    except PolicyViolation as exc:
        log.warning("store.policy_violation", table=exc.table, action=exc.action)
        raise _denied(permission_message) from exc
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise ConflictError(conflict_message) from exc
        log.error("store.integrity_error", error=str(exc.orig))
        raise StoreFailure() from exc
    except DBAPIError as exc:
        if is_policy_rejection(exc):
            log.warning("store.policy_violation", error=str(exc.orig))
            raise _denied(permission_message) from exc
        log.error("store.error", error=str(exc))
        raise StoreFailure() from exc
    except SQLAlchemyError as exc:
        log.error("store.error", error=str(exc))
        raise StoreFailure() from exc


def _denied(message: Optional[str]) -> PermissionDenied:
    return PermissionDenied(message) if message else PermissionDenied()
