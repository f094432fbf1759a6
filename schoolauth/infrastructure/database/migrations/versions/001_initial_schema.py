# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Initial access-control schema.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2025-11-29

Creates roles, permissions, role_permissions, users and student_users.
Downgrade drops them in reverse order and skips tables that are missing.
"""

from typing import Sequence, Union

from schoolauth.infrastructure.database.migrations.operations import (
    create_tables,
    drop_tables,
)
from schoolauth.infrastructure.database.schema import ACCESS_CONTROL_TABLES

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLES = ACCESS_CONTROL_TABLES


def upgrade() -> None:
    """Create the access-control tables."""
    create_tables(TABLES)


def downgrade() -> None:
    """Drop the access-control tables in reverse dependency order."""
    drop_tables(tuple(reversed(TABLES)))
