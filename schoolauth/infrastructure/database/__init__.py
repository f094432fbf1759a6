# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for the access-control schema.

This package provides:
- schema: Table descriptors for roles, permissions, users and student links
- migrations: Revisions and the runner that applies/reverts them
- connection: SQLAlchemy async engine and session management
- exceptions: Migration error taxonomy

Example:
    from schoolauth.infrastructure.database import (
        MigrationRunner,
        create_engine_for_url,
    )

    engine = create_engine_for_url("sqlite+aiosqlite:///school.db")
    await MigrationRunner(engine).apply()
"""

from schoolauth.infrastructure.database.connection import (
    check_database_connection,
    close_database,
    create_database_engine,
    create_engine_for_url,
    get_engine,
    get_session,
    get_sessionmaker,
    init_database,
)
from schoolauth.infrastructure.database.exceptions import (
    ConnectionFailure,
    ConstraintViolation,
    DatabaseError,
    DependencyOrderViolation,
    MigrationFailure,
    MigrationLockError,
    classify_error,
)
from schoolauth.infrastructure.database.migrations import (
    MIGRATIONS,
    MigrationRunner,
    MigrationState,
    run_migrations,
    revert_migrations,
)
from schoolauth.infrastructure.database.schema import (
    ACCESS_CONTROL_TABLES,
    TABLE_NAMES,
    build_metadata,
)

__all__ = [
    # Connection
    "check_database_connection",
    "close_database",
    "create_database_engine",
    "create_engine_for_url",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "init_database",
    # Errors
    "DatabaseError",
    "MigrationFailure",
    "ConstraintViolation",
    "DependencyOrderViolation",
    "ConnectionFailure",
    "MigrationLockError",
    "classify_error",
    # Migrations
    "MIGRATIONS",
    "MigrationRunner",
    "MigrationState",
    "run_migrations",
    "revert_migrations",
    # Schema
    "ACCESS_CONTROL_TABLES",
    "TABLE_NAMES",
    "build_metadata",
]
