# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database and migration error taxonomy.

Every failure raised while applying or reverting a migration is a
MigrationFailure carrying the revision, the direction and the table
being processed, so an operator can decide whether to revert before
retrying.

Hierarchy:
    DatabaseError
    └── MigrationFailure
        ├── ConstraintViolation
        ├── DependencyOrderViolation
        ├── ConnectionFailure
        └── MigrationLockError
"""

import re
from typing import Literal, Optional

from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    SQLAlchemyError,
)

Direction = Literal["upgrade", "downgrade"]

_DUPLICATE_OBJECT_MARKERS = ("already exists", "duplicate")
_CONNECTION_MARKERS = (
    "connection refused",
    "could not connect",
    "unable to open database file",
    "server closed the connection",
    "connection is closed",
    "connection was closed",
)
_TABLE_PATTERNS = (
    re.compile(r"constraint failed: (\w+)\."),
    re.compile(r"table \"?(\w+)\"? already exists"),
    re.compile(r"relation \"(\w+)\" already exists"),
)


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        """Initialize the database error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class MigrationFailure(DatabaseError):
    """A migration step failed and the remaining steps were aborted.

    Attributes:
        table: Table being created or dropped when the failure happened.
        direction: "upgrade" or "downgrade", None outside a migration.
        revision: Revision being processed, filled in by the runner.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        *,
        table: Optional[str] = None,
        direction: Optional[Direction] = None,
        revision: Optional[str] = None,
    ) -> None:
        super().__init__(message, original_error)
        self.table = table
        self.direction = direction
        self.revision = revision

    @property
    def context(self) -> dict[str, Optional[str]]:
        """Step identification as a dict, for structured logging."""
        return {
            "revision": self.revision,
            "direction": self.direction,
            "table": self.table,
        }

    def __str__(self) -> str:
        """Return string representation naming the failed step."""
        parts = [f"{key}={value}" for key, value in self.context.items() if value]
        text = self.message
        if parts:
            text = f"{text} [{', '.join(parts)}]"
        if self.original_error:
            text = f"{text}: {self.original_error}"
        return text


class ConstraintViolation(MigrationFailure):
    """An object already exists or a uniqueness/foreign-key rule was violated.

    Never retried automatically.
    """


class DependencyOrderViolation(MigrationFailure):
    """A create or drop sequence does not respect foreign-key dependencies.

    Indicates a logic defect in the table sequence, not a runtime condition.
    """


class ConnectionFailure(MigrationFailure):
    """The target database is unreachable or the connection was lost.

    The whole attempt may be retried by the operator.
    """


class MigrationLockError(MigrationFailure):
    """Another migration attempt holds the migration lock."""


def table_from_error(error: BaseException) -> Optional[str]:
    """Extract the table name from a driver error message, if present."""
    detail = str(getattr(error, "orig", None) or error)
    for pattern in _TABLE_PATTERNS:
        match = pattern.search(detail)
        if match:
            return match.group(1)
    return None


def classify_error(
    error: BaseException,
    *,
    table: Optional[str] = None,
    direction: Optional[Direction] = None,
    revision: Optional[str] = None,
) -> MigrationFailure:
    """Map a SQLAlchemy or driver error onto the migration taxonomy.

    Args:
        error: The exception raised by SQLAlchemy or the DB-API driver.
        table: Table being processed, if known.
        direction: Migration direction, if inside a migration.
        revision: Revision being processed, if known.

    Returns:
        A MigrationFailure subclass instance wrapping the error. An error
        that is already a MigrationFailure gets its missing context filled
        in and is returned as-is.
    """
    if isinstance(error, MigrationFailure):
        error.table = error.table or table
        error.direction = error.direction or direction
        error.revision = error.revision or revision
        return error

    detail = str(getattr(error, "orig", None) or error).lower()
    table = table or table_from_error(error)

    if isinstance(error, IntegrityError) or any(
        marker in detail for marker in _DUPLICATE_OBJECT_MARKERS
    ):
        cls: type[MigrationFailure] = ConstraintViolation
        message = "Constraint violation"
    elif (
        isinstance(error, (DisconnectionError, InterfaceError, OSError))
        or (isinstance(error, DBAPIError) and error.connection_invalidated)
        or any(marker in detail for marker in _CONNECTION_MARKERS)
    ):
        cls = ConnectionFailure
        message = "Database connection failed"
    elif isinstance(error, SQLAlchemyError):
        cls = MigrationFailure
        message = "Schema operation failed"
    else:
        cls = MigrationFailure
        message = "Unexpected migration error"

    return cls(
        message,
        error if isinstance(error, Exception) else None,
        table=table,
        direction=direction,
        revision=revision,
    )
