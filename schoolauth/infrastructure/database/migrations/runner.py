# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database migration runner.

Applies and reverts migration revisions programmatically, without the
alembic CLI. The runner keeps the current revision in a version table and
serializes attempts through a single-row lock table, so only one attempt
runs against a database at a time.

Each revision runs in its own transaction together with the version
update: a failed revision leaves neither tables nor a version bump behind.
Failures are never retried; they are logged and raised to the caller as
MigrationFailure subclasses naming the revision, direction and table.

Example:
    from schoolauth.infrastructure.database.migrations.runner import (
        MigrationRunner,
        run_migrations,
    )

    # Apply everything pending using configured settings
    applied = await run_migrations()

    # Or drive a runner over an existing engine
    runner = MigrationRunner(engine)
    await runner.apply()
    await runner.revert()
"""

import importlib
import uuid
from datetime import datetime, timezone
from enum import Enum
from types import ModuleType
from typing import Any, Callable, Optional, Sequence

import sqlalchemy as sa
from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from schoolauth.core.config.settings import get_settings
from schoolauth.infrastructure.database.connection import create_engine_for_url
from schoolauth.infrastructure.database.exceptions import (
    DatabaseError,
    Direction,
    MigrationFailure,
    MigrationLockError,
    classify_error,
)
from schoolauth.utils.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)

MIGRATIONS_PACKAGE = "schoolauth.infrastructure.database.migrations.versions"

# Migration files in order (must be maintained manually)
MIGRATIONS = [
    "001_initial_schema",
]

LOCK_ROW_ID = 1


class MigrationState(str, Enum):
    """Lifecycle of one revision against one database."""

    UNAPPLIED = "unapplied"
    APPLYING = "applying"
    APPLIED = "applied"
    REVERTING = "reverting"
    FAILED = "failed"


def load_migration(revision: str) -> ModuleType:
    """Import a migration module by revision id.

    Raises:
        MigrationFailure: If the module cannot be imported.
    """
    module_name = f"{MIGRATIONS_PACKAGE}.{revision}"
    try:
        return importlib.import_module(module_name)
    except ImportError as e:
        raise MigrationFailure(f"Cannot import migration {revision}", e, revision=revision) from e


def _run_operation_sync(connection: sa.Connection, operation: Callable[[], None]) -> None:
    """Run an upgrade/downgrade function with alembic operations bound.

    Alembic operations are sync and use a module-level proxy (alembic.op),
    so they run through AsyncConnection.run_sync.
    """
    context = MigrationContext.configure(connection)
    with Operations.context(context):
        operation()


async def _execute(conn: AsyncConnection, revision: str, direction: Direction) -> None:
    module = load_migration(revision)
    operation: Optional[Callable[[], None]] = getattr(module, direction, None)
    if operation is None:
        raise MigrationFailure(
            f"Migration {revision} has no {direction}() function",
            revision=revision,
            direction=direction,
        )
    await conn.run_sync(_run_operation_sync, operation)


async def execute_step(engine: AsyncEngine, revision: str, direction: Direction) -> None:
    """Run one revision's upgrade or downgrade in its own transaction.

    No bookkeeping is recorded; MigrationRunner uses this together with the
    version table.

    Raises:
        MigrationFailure: If the step fails. The transaction is rolled back.
    """
    try:
        async with engine.begin() as conn:
            await _execute(conn, revision, direction)
    except (MigrationFailure, SQLAlchemyError, OSError) as e:
        failure = classify_error(e, direction=direction, revision=revision)
        if failure is e:
            raise
        raise failure from e


class MigrationRunner:
    """Applies and reverts revisions against one database.

    Attributes:
        engine: Async engine for the target database.
        migrations: Revision ids in application order.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        migrations: Sequence[str] = MIGRATIONS,
        version_table: str = "alembic_version",
        lock_table: str = "schema_migrations_lock",
    ) -> None:
        self.engine = engine
        self.migrations = list(migrations)
        self._states: dict[str, MigrationState] = {}

        self._metadata = sa.MetaData()
        self._version_table = sa.Table(
            version_table,
            self._metadata,
            sa.Column("version_num", sa.String(128), nullable=False),
            sa.PrimaryKeyConstraint("version_num", name=f"{version_table}_pkc"),
        )
        self._lock_table = sa.Table(
            lock_table,
            self._metadata,
            sa.Column("lock_id", sa.Integer, primary_key=True, autoincrement=False),
            sa.Column("is_locked", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        )

    @property
    def bookkeeping_tables(self) -> set[str]:
        """Names of the tables the runner itself maintains."""
        return {self._version_table.name, self._lock_table.name}

    # =========================================================================
    # Public API
    # =========================================================================

    async def apply(self, target_revision: Optional[str] = None) -> list[str]:
        """Apply pending revisions up to target_revision (all when None).

        Returns:
            Applied revision ids, empty when already up to date.

        Raises:
            MigrationLockError: If another attempt holds the lock.
            MigrationFailure: If a revision fails. Earlier revisions in the
                same call stay applied.
        """
        return await self._run("upgrade", target_revision)

    async def revert(self, target_revision: Optional[str] = None) -> list[str]:
        """Revert applied revisions newer than target_revision (all when None).

        With no version recorded, leftover tables of the first revision are
        dropped; a database with none of them is left untouched.

        Returns:
            Reverted revision ids, newest first.

        Raises:
            MigrationLockError: If another attempt holds the lock.
            MigrationFailure: If a revision fails to revert.
        """
        return await self._run("downgrade", target_revision)

    async def current_version(self) -> Optional[str]:
        """Get current revision from the version table."""
        await self._ensure_bookkeeping()
        async with self.engine.connect() as conn:
            result = await conn.execute(sa.select(self._version_table.c.version_num).limit(1))
            row = result.first()
            return row[0] if row else None

    async def state(self, revision: str) -> MigrationState:
        """Get the state of a revision.

        The state of an attempt made by this runner (including FAILED) takes
        precedence; otherwise it is derived from the version table.
        """
        if revision in self._states:
            return self._states[revision]
        position = self._index(revision)
        current = await self.current_version()
        if current is not None and position <= self._index(current):
            return MigrationState.APPLIED
        return MigrationState.UNAPPLIED

    async def is_locked(self) -> bool:
        """Check whether an attempt currently holds the migration lock."""
        await self._ensure_bookkeeping()
        async with self.engine.connect() as conn:
            result = await conn.execute(
                sa.select(self._lock_table.c.is_locked).where(
                    self._lock_table.c.lock_id == LOCK_ROW_ID
                )
            )
            return bool(result.scalar())

    async def status(self) -> dict[str, Any]:
        """Get detailed migration status.

        Returns:
            Dict with current version, pending migrations, and all migrations.
        """
        current = await self.current_version()
        pending = self._pending(current)
        return {
            "current_version": current,
            "latest_version": self.migrations[-1] if self.migrations else None,
            "pending_count": len(pending),
            "pending_migrations": pending,
            "all_migrations": list(self.migrations),
            "is_up_to_date": len(pending) == 0,
            "locked": await self.is_locked(),
        }

    async def release_lock(self) -> None:
        """Clear the migration lock.

        For operators recovering from an attempt that died holding the lock.
        """
        await self._ensure_bookkeeping()
        async with self.engine.begin() as conn:
            await conn.execute(
                sa.update(self._lock_table)
                .where(self._lock_table.c.lock_id == LOCK_ROW_ID)
                .values(is_locked=False, locked_at=None)
            )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _run(self, direction: Direction, target_revision: Optional[str]) -> list[str]:
        await self._ensure_bookkeeping()
        bind_context(migration_attempt=uuid.uuid4().hex[:12], direction=direction)
        try:
            await self._acquire_lock(direction)
            try:
                done = await self._run_locked(direction, target_revision)
            except BaseException:
                await self._release_lock_after_failure()
                raise
            await self.release_lock()
            return done
        finally:
            clear_context()

    async def _run_locked(self, direction: Direction, target_revision: Optional[str]) -> list[str]:
        current = await self.current_version()
        logger.info("current_migration_version", version=current or "None")

        if direction == "upgrade":
            revisions = self._pending(current, target_revision)
        else:
            revisions = self._applied_after(current, target_revision)
            if not revisions and current is None and target_revision is None:
                revisions = await self._leftover_revisions()

        if not revisions:
            logger.info("no_migrations_to_run")
            return []

        logger.info("running_migrations", count=len(revisions), revisions=revisions)

        done = []
        for revision in revisions:
            await self._step(revision, direction)
            done.append(revision)
        return done

    async def _leftover_revisions(self) -> list[str]:
        """First revision, if its tables exist while no version is recorded.

        Tables created by hand, or left by a backend without transactional
        DDL, form a partial schema with no version. The downgrade skips
        absent tables, so running it clears whatever is there.
        """
        if not self.migrations:
            return []
        first = self.migrations[0]
        names = {table.name for table in getattr(load_migration(first), "TABLES", ())}
        if not names:
            return []

        async with self.engine.connect() as conn:
            existing = set(
                await conn.run_sync(lambda sync_conn: sa.inspect(sync_conn).get_table_names())
            )

        leftover = names & existing
        if not leftover:
            return []
        logger.warning("leftover_tables_found", revision=first, tables=sorted(leftover))
        return [first]

    async def _release_lock_after_failure(self) -> None:
        try:
            await self.release_lock()
        except (DatabaseError, SQLAlchemyError, OSError) as e:
            # The lock stays held; release_lock() clears it once the database is back
            logger.error("lock_release_failed", error=str(e))

    async def _step(self, revision: str, direction: Direction) -> None:
        if direction == "upgrade":
            running, finished = MigrationState.APPLYING, MigrationState.APPLIED
            new_version: Optional[str] = revision
        else:
            running, finished = MigrationState.REVERTING, MigrationState.UNAPPLIED
            position = self._index(revision)
            new_version = self.migrations[position - 1] if position > 0 else None

        self._set_state(revision, running)
        try:
            async with self.engine.begin() as conn:
                await _execute(conn, revision, direction)
                await self._write_version(conn, new_version)
        except (MigrationFailure, SQLAlchemyError, OSError) as e:
            self._set_state(revision, MigrationState.FAILED)
            failure = classify_error(e, direction=direction, revision=revision)
            logger.error("migration_failed", error=str(failure), **failure.context)
            if failure is e:
                raise
            raise failure from e

        self._set_state(revision, finished)

    def _set_state(self, revision: str, state: MigrationState) -> None:
        self._states[revision] = state
        logger.info("migration_state_changed", revision=revision, state=state.value)

    async def _ensure_bookkeeping(self) -> None:
        """Create version and lock tables if they do not exist."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(self._metadata.create_all)
                result = await conn.execute(
                    sa.select(self._lock_table.c.lock_id).where(
                        self._lock_table.c.lock_id == LOCK_ROW_ID
                    )
                )
                present = result.first() is not None
            if not present:
                await self._insert_lock_row()
        except (SQLAlchemyError, OSError) as e:
            raise classify_error(e) from e

    async def _insert_lock_row(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    sa.insert(self._lock_table).values(lock_id=LOCK_ROW_ID, is_locked=False)
                )
        except IntegrityError:
            # Another runner inserted it first
            logger.debug("lock_row_exists")

    async def _acquire_lock(self, direction: Direction) -> None:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    sa.update(self._lock_table)
                    .where(
                        self._lock_table.c.lock_id == LOCK_ROW_ID,
                        self._lock_table.c.is_locked == sa.false(),
                    )
                    .values(is_locked=True, locked_at=datetime.now(timezone.utc))
                )
                acquired = result.rowcount == 1
        except (SQLAlchemyError, OSError) as e:
            raise classify_error(e, direction=direction) from e

        if not acquired:
            raise MigrationLockError(
                "Migration lock is held by another attempt",
                direction=direction,
            )

    async def _write_version(self, conn: AsyncConnection, version: Optional[str]) -> None:
        await conn.execute(sa.delete(self._version_table))
        if version is not None:
            await conn.execute(sa.insert(self._version_table).values(version_num=version))

    def _index(self, revision: str) -> int:
        try:
            return self.migrations.index(revision)
        except ValueError:
            raise MigrationFailure(
                f"Revision {revision} not in known migrations list", revision=revision
            ) from None

    def _pending(
        self,
        current_version: Optional[str],
        target_revision: Optional[str] = None,
    ) -> list[str]:
        """Revisions to apply, in order, to move from current to target."""
        start = 0 if current_version is None else self._index(current_version) + 1
        end = len(self.migrations) if target_revision is None else self._index(target_revision) + 1
        return self.migrations[start:end]

    def _applied_after(
        self,
        current_version: Optional[str],
        target_revision: Optional[str] = None,
    ) -> list[str]:
        """Revisions to revert, newest first, to move from current back to target."""
        if current_version is None:
            return []
        start = 0 if target_revision is None else self._index(target_revision) + 1
        end = self._index(current_version) + 1
        return list(reversed(self.migrations[start:end]))


# =============================================================================
# Convenience functions
# =============================================================================


def _runner_for(db_url: Optional[str]) -> MigrationRunner:
    settings = get_settings()
    if db_url is None:
        engine = create_engine_for_url(settings.database.async_url, echo=settings.database.echo)
    else:
        engine = create_engine_for_url(db_url)
    return MigrationRunner(
        engine,
        version_table=settings.migration.version_table,
        lock_table=settings.migration.lock_table,
    )


async def run_migrations(
    db_url: Optional[str] = None,
    target_revision: Optional[str] = None,
) -> list[str]:
    """Run pending migrations for a database.

    Args:
        db_url: Database connection URL. Defaults to the configured database.
        target_revision: Revision to migrate to. Defaults to the configured
            target, or the latest revision.

    Returns:
        List of applied migration revision IDs.

    Raises:
        MigrationFailure: If any migration fails.
    """
    runner = _runner_for(db_url)
    target = target_revision or get_settings().migration.target_revision
    try:
        applied = await runner.apply(target)
        for revision in applied:
            logger.info("applied_migration", revision=revision)
        return applied
    finally:
        await runner.engine.dispose()


async def revert_migrations(
    db_url: Optional[str] = None,
    target_revision: Optional[str] = None,
) -> list[str]:
    """Revert migrations for a database down to target_revision (all when None).

    Returns:
        List of reverted migration revision IDs, newest first.

    Raises:
        MigrationFailure: If any revert fails.
    """
    runner = _runner_for(db_url)
    try:
        return await runner.revert(target_revision)
    finally:
        await runner.engine.dispose()


async def check_migrations_pending(db_url: Optional[str] = None) -> bool:
    """Check if there are pending migrations for a database."""
    runner = _runner_for(db_url)
    try:
        status = await runner.status()
        return status["pending_count"] > 0
    finally:
        await runner.engine.dispose()


async def get_migration_status(db_url: Optional[str] = None) -> dict[str, Any]:
    """Get detailed migration status for a database."""
    runner = _runner_for(db_url)
    try:
        return await runner.status()
    finally:
        await runner.engine.dispose()
