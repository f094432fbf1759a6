# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database migrations package.

Migration revisions live in the versions subpackage and are applied by
the runner. Revisions describe their tables through the descriptors in
schoolauth.infrastructure.database.schema.
"""

from schoolauth.infrastructure.database.migrations.runner import (
    MIGRATIONS,
    MigrationRunner,
    MigrationState,
    check_migrations_pending,
    execute_step,
    get_migration_status,
    revert_migrations,
    run_migrations,
)

__all__ = [
    "MIGRATIONS",
    "MigrationRunner",
    "MigrationState",
    "check_migrations_pending",
    "execute_step",
    "get_migration_status",
    "revert_migrations",
    "run_migrations",
]
