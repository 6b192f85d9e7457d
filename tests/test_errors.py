"""
Tests for store error classification.
"""

from __future__ import annotations

from typing import Optional

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from orgconsole.core.errors import (
    GENERIC_FAILURE,
    ConflictError,
    PermissionDenied,
    PolicyViolation,
    StoreFailure,
    store_errors,
)


class DriverError(Exception):
    """Stands in for a driver exception carrying a SQLSTATE."""

    def __init__(self, message: str, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class TestStoreErrors:
    def test_emulated_policy_is_permission_denied(self):
        with pytest.raises(PermissionDenied, match="not allowed here"):
            with store_errors(permission_message="not allowed here"):
                raise PolicyViolation("invitations", "insert")

    def test_database_row_policy_is_permission_denied(self):
        orig = DriverError('new row violates row-level security policy for table "invitations"', "42501")
        with pytest.raises(PermissionDenied, match="not allowed here"):
            with store_errors(permission_message="not allowed here"):
                raise ProgrammingError("INSERT INTO invitations ...", {}, orig)

    def test_row_policy_recognised_by_message(self):
        orig = DriverError('new row violates row-level security policy for table "branches"')
        with pytest.raises(PermissionDenied, match="You do not have permission to perform this action"):
            with store_errors():
                raise ProgrammingError("INSERT INTO branches ...", {}, orig)

    def test_unique_violation_is_conflict(self):
        orig = DriverError("duplicate key value violates unique constraint", "23505")
        with pytest.raises(ConflictError, match="already taken"):
            with store_errors(conflict_message="already taken"):
                raise IntegrityError("INSERT INTO organizations ...", {}, orig)

    def test_other_driver_errors_are_generic(self):
        with pytest.raises(StoreFailure) as excinfo:
            with store_errors(permission_message="not allowed here"):
                raise OperationalError("SELECT 1", {}, DriverError("server closed the connection"))

        assert excinfo.value.message == GENERIC_FAILURE
        assert excinfo.value.status_code == 500
