# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Access-control schema described as data.

The five tables created by the initial migration are declared here as
TableSpec descriptors. Migrations turn them into DDL through Alembic
operations; tests and tooling turn them into a SQLAlchemy MetaData.

Creation order:
    roles, permissions -> role_permissions -> users -> student_users

Example:
    from schoolauth.infrastructure.database.schema import (
        ACCESS_CONTROL_TABLES,
        build_metadata,
    )

    metadata = build_metadata()
    users = metadata.tables["users"]
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.schema import SchemaItem

from schoolauth.infrastructure.database.exceptions import DependencyOrderViolation


@dataclass(frozen=True)
class ForeignKeySpec:
    """Foreign key from a column to "table.column".

    Attributes:
        target: Referenced column as "table.column".
        ondelete: ON DELETE action ("CASCADE", "SET NULL").
        name: Constraint name.
    """

    target: str
    ondelete: Optional[str] = None
    name: Optional[str] = None

    @property
    def table(self) -> str:
        """Referenced table name."""
        return self.target.split(".", 1)[0]


@dataclass(frozen=True)
class ColumnSpec:
    """Column descriptor.

    Attributes:
        name: Column name.
        type_: SQLAlchemy type (class or instance).
        nullable: Whether NULL is allowed.
        primary_key: Single-column primary key (surrogate key).
        autoincrement: Auto-assigned integer key.
        server_default: Server-side default clause.
        foreign_key: Optional foreign key descriptor.
    """

    name: str
    type_: Any
    nullable: bool = True
    primary_key: bool = False
    autoincrement: bool | str = "auto"
    server_default: Any = None
    foreign_key: Optional[ForeignKeySpec] = None

    def build(self) -> sa.Column:
        """Build a new SQLAlchemy Column (columns cannot be shared between tables)."""
        args: list[Any] = [self.name, self.type_]
        if self.foreign_key is not None:
            args.append(
                sa.ForeignKey(
                    self.foreign_key.target,
                    ondelete=self.foreign_key.ondelete,
                    name=self.foreign_key.name,
                )
            )
        return sa.Column(
            *args,
            nullable=self.nullable,
            primary_key=self.primary_key,
            autoincrement=self.autoincrement,
            server_default=self.server_default,
        )


@dataclass(frozen=True)
class TableSpec:
    """Table descriptor.

    Attributes:
        name: Table name.
        columns: Column descriptors in declaration order.
        primary_key: Composite primary key column names, with its name.
        unique: Unique constraints as (name, column names) pairs.
    """

    name: str
    columns: tuple[ColumnSpec, ...]
    primary_key: tuple[str, ...] = ()
    primary_key_name: Optional[str] = None
    unique: tuple[tuple[str, tuple[str, ...]], ...] = field(default=())

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    @property
    def dependencies(self) -> set[str]:
        """Names of tables referenced by this table's foreign keys."""
        return {
            column.foreign_key.table
            for column in self.columns
            if column.foreign_key is not None and column.foreign_key.table != self.name
        }

    def elements(self) -> list[SchemaItem]:
        """Build fresh columns and table-level constraints for create_table()."""
        items: list[SchemaItem] = [column.build() for column in self.columns]
        if self.primary_key:
            items.append(sa.PrimaryKeyConstraint(*self.primary_key, name=self.primary_key_name))
        for name, columns in self.unique:
            items.append(sa.UniqueConstraint(*columns, name=name))
        return items

    def to_table(self, metadata: sa.MetaData) -> sa.Table:
        """Build a SQLAlchemy Table bound to the given metadata."""
        return sa.Table(self.name, metadata, *self.elements())


# =============================================================================
# Access-control tables
# =============================================================================

ROLES = TableSpec(
    name="roles",
    columns=(
        ColumnSpec("role_id", sa.Integer, nullable=False, primary_key=True, autoincrement=True),
        ColumnSpec("role_name", sa.String(50), nullable=False),
        ColumnSpec("role_description", sa.Text),
        ColumnSpec("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ),
)

PERMISSIONS = TableSpec(
    name="permissions",
    columns=(
        ColumnSpec(
            "permission_id", sa.Integer, nullable=False, primary_key=True, autoincrement=True
        ),
        ColumnSpec("permission_name", sa.String(100), nullable=False),
        ColumnSpec("module", sa.String(50)),
        ColumnSpec("description", sa.Text),
    ),
)

# Many-to-many link between roles and permissions
ROLE_PERMISSIONS = TableSpec(
    name="role_permissions",
    columns=(
        ColumnSpec(
            "role_id",
            sa.Integer,
            nullable=False,
            autoincrement=False,
            foreign_key=ForeignKeySpec(
                "roles.role_id", ondelete="CASCADE", name="fk_role_permissions_role_id"
            ),
        ),
        ColumnSpec(
            "permission_id",
            sa.Integer,
            nullable=False,
            autoincrement=False,
            foreign_key=ForeignKeySpec(
                "permissions.permission_id",
                ondelete="CASCADE",
                name="fk_role_permissions_permission_id",
            ),
        ),
    ),
    primary_key=("role_id", "permission_id"),
    primary_key_name="pk_role_permissions",
)

USERS = TableSpec(
    name="users",
    columns=(
        ColumnSpec("user_id", sa.Integer, nullable=False, primary_key=True, autoincrement=True),
        ColumnSpec("username", sa.String(100), nullable=False),
        ColumnSpec("password_hash", sa.Text, nullable=False),
        ColumnSpec("email", sa.String(150)),
        ColumnSpec("full_name", sa.String(200)),
        ColumnSpec(
            "role_id",
            sa.Integer,
            foreign_key=ForeignKeySpec("roles.role_id", ondelete="SET NULL", name="fk_users_role_id"),
        ),
        ColumnSpec("is_active", sa.Boolean, server_default=sa.true()),
        ColumnSpec("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        ColumnSpec("last_login", sa.DateTime(timezone=True)),
    ),
    unique=(
        ("uq_users_username", ("username",)),
        ("uq_users_email", ("email",)),
    ),
)

# One-to-one link between a user account and a student record.
# student_id is an opaque identifier: the students table is not part of this schema.
STUDENT_USERS = TableSpec(
    name="student_users",
    columns=(
        ColumnSpec("student_id", sa.Integer, nullable=False, autoincrement=False),
        ColumnSpec(
            "user_id",
            sa.Integer,
            nullable=False,
            autoincrement=False,
            foreign_key=ForeignKeySpec(
                "users.user_id", ondelete="CASCADE", name="fk_student_users_user_id"
            ),
        ),
    ),
    primary_key=("student_id", "user_id"),
    primary_key_name="pk_student_users",
    unique=(("uq_student_users_user_id", ("user_id",)),),
)

ACCESS_CONTROL_TABLES: tuple[TableSpec, ...] = (
    ROLES,
    PERMISSIONS,
    ROLE_PERMISSIONS,
    USERS,
    STUDENT_USERS,
)

TABLE_NAMES: tuple[str, ...] = tuple(table.name for table in ACCESS_CONTROL_TABLES)

_TABLES_BY_NAME = {table.name: table for table in ACCESS_CONTROL_TABLES}


def get_table_spec(name: str) -> TableSpec:
    """Look up a table descriptor by name.

    Raises:
        KeyError: If the table is not part of the access-control schema.
    """
    return _TABLES_BY_NAME[name]


def build_metadata(tables: Iterable[TableSpec] = ACCESS_CONTROL_TABLES) -> sa.MetaData:
    """Build a MetaData holding the given tables."""
    metadata = sa.MetaData()
    for table in tables:
        table.to_table(metadata)
    return metadata


def check_creation_order(
    tables: Sequence[TableSpec],
    existing: Iterable[str] = (),
) -> None:
    """Verify every table is created after the tables it references.

    Args:
        tables: Tables in the order they will be created.
        existing: Names of tables already present on the target.

    Raises:
        DependencyOrderViolation: If a table references one that is neither
            already present nor created earlier in the sequence.
    """
    available = set(existing)
    for table in tables:
        missing = table.dependencies - available
        if missing:
            raise DependencyOrderViolation(
                f"Table {table.name} created before {', '.join(sorted(missing))}",
                table=table.name,
                direction="upgrade",
            )
        available.add(table.name)


def check_drop_order(tables: Sequence[TableSpec]) -> None:
    """Verify no table is dropped while a table referencing it remains.

    Only references among the given tables are considered.

    Args:
        tables: Tables in the order they will be dropped.

    Raises:
        DependencyOrderViolation: If a referenced table is dropped before
            a table that references it.
    """
    dropped: set[str] = set()
    for table in tables:
        dependents_remaining = [
            other.name
            for other in tables
            if other.name not in dropped
            and other.name != table.name
            and table.name in other.dependencies
        ]
        if dependents_remaining:
            raise DependencyOrderViolation(
                f"Table {table.name} dropped before {', '.join(sorted(dependents_remaining))}",
                table=table.name,
                direction="downgrade",
            )
        dropped.add(table.name)
