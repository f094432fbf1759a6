# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Ordered create/drop steps for table descriptors.

Migration modules call create_tables() from upgrade() and drop_tables()
from downgrade(). Both must run inside an Alembic operations context
(see runner._run_operation_sync). Steps run one at a time; the first
failure aborts the remaining steps and is raised as a MigrationFailure
naming the table.
"""

from typing import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.exc import SQLAlchemyError

from schoolauth.infrastructure.database.exceptions import classify_error
from schoolauth.infrastructure.database.schema import (
    TableSpec,
    check_creation_order,
    check_drop_order,
)
from schoolauth.utils.logging import get_logger

logger = get_logger(__name__)


def create_tables(tables: Sequence[TableSpec]) -> None:
    """Create tables in the given order.

    Args:
        tables: Table descriptors in dependency order.

    Raises:
        DependencyOrderViolation: If the order does not respect foreign keys.
        MigrationFailure: If a table cannot be created.
    """
    check_creation_order(tables)

    for table in tables:
        logger.info("creating_table", table=table.name)
        try:
            op.create_table(table.name, *table.elements())
        except (SQLAlchemyError, OSError) as e:
            raise classify_error(e, table=table.name, direction="upgrade") from e


def drop_tables(tables: Sequence[TableSpec]) -> None:
    """Drop tables in the given order, skipping those that do not exist.

    Args:
        tables: Table descriptors in reverse dependency order.

    Raises:
        DependencyOrderViolation: If the order does not respect foreign keys.
        MigrationFailure: If a table cannot be dropped.
    """
    check_drop_order(tables)

    for table in tables:
        try:
            if not sa.inspect(op.get_bind()).has_table(table.name):
                logger.debug("table_absent", table=table.name)
                continue
            logger.info("dropping_table", table=table.name)
            op.drop_table(table.name)
        except (SQLAlchemyError, OSError) as e:
            raise classify_error(e, table=table.name, direction="downgrade") from e
