# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for migration runner planning.

No database is touched: engines are created lazily and never connected.
"""

import pytest

from schoolauth.infrastructure.database.connection import create_engine_for_url
from schoolauth.infrastructure.database.exceptions import MigrationFailure
from schoolauth.infrastructure.database.migrations.runner import (
    MIGRATIONS,
    MigrationRunner,
    MigrationState,
    load_migration,
)
from schoolauth.infrastructure.database.schema import ACCESS_CONTROL_TABLES


@pytest.fixture
def runner() -> MigrationRunner:
    engine = create_engine_for_url("sqlite+aiosqlite://")
    return MigrationRunner(engine, migrations=["001_a", "002_b", "003_c"])


class TestLoadMigration:
    """Test migration module loading."""

    def test_initial_schema_module(self):
        """Verify the initial revision exposes the alembic-style interface."""
        module = load_migration("001_initial_schema")

        assert module.revision == "001_initial_schema"
        assert module.down_revision is None
        assert callable(module.upgrade)
        assert callable(module.downgrade)
        assert module.TABLES == ACCESS_CONTROL_TABLES

    def test_missing_module(self):
        """Verify an unknown revision raises MigrationFailure."""
        with pytest.raises(MigrationFailure) as exc_info:
            load_migration("999_missing")

        assert exc_info.value.revision == "999_missing"

    def test_registered_migrations(self):
        """Verify the registered list starts with the initial schema."""
        assert MIGRATIONS[0] == "001_initial_schema"
        for revision in MIGRATIONS:
            assert load_migration(revision).revision == revision


class TestPlanning:
    """Test pending/applied computations."""

    def test_pending_from_scratch(self, runner):
        assert runner._pending(None) == ["001_a", "002_b", "003_c"]

    def test_pending_after_current(self, runner):
        assert runner._pending("001_a") == ["002_b", "003_c"]

    def test_pending_up_to_target(self, runner):
        assert runner._pending(None, "002_b") == ["001_a", "002_b"]

    def test_pending_when_up_to_date(self, runner):
        assert runner._pending("003_c") == []

    def test_pending_target_behind_current(self, runner):
        assert runner._pending("003_c", "001_a") == []

    def test_revert_all(self, runner):
        assert runner._applied_after("003_c") == ["003_c", "002_b", "001_a"]

    def test_revert_to_target(self, runner):
        assert runner._applied_after("003_c", "001_a") == ["003_c", "002_b"]

    def test_revert_nothing_applied(self, runner):
        assert runner._applied_after(None) == []

    def test_revert_target_ahead_of_current(self, runner):
        assert runner._applied_after("001_a", "002_b") == []

    def test_unknown_revision(self, runner):
        """Verify unknown revisions are rejected."""
        with pytest.raises(MigrationFailure, match="not in known migrations"):
            runner._pending(None, "004_d")

    def test_bookkeeping_tables(self, runner):
        assert runner.bookkeeping_tables == {"alembic_version", "schema_migrations_lock"}

    def test_custom_bookkeeping_tables(self):
        """Verify version and lock table names are configurable."""
        runner = MigrationRunner(
            create_engine_for_url("sqlite+aiosqlite://"),
            version_table="versions",
            lock_table="locks",
        )

        assert runner.bookkeeping_tables == {"versions", "locks"}


class TestMigrationState:
    """Test state values."""

    def test_values(self):
        assert [state.value for state in MigrationState] == [
            "unapplied",
            "applying",
            "applied",
            "reverting",
            "failed",
        ]
