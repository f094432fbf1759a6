# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database connection management using SQLAlchemy async.

Provides the async engine the migration runner executes DDL through, and
a session context for verifying the migrated schema.

Uses SQLAlchemy 2.0 async API with the asyncpg driver for PostgreSQL and
aiosqlite for SQLite. SQLite connections get foreign-key enforcement and
transactional DDL switched on, so a failed migration rolls back there
just as it does on PostgreSQL.

Example:
    from schoolauth.infrastructure.database.connection import (
        init_database,
        get_session,
    )

    # Initialize at startup
    await init_database(settings)

    async with get_session() as session:
        await session.execute(insert(users).values(username="ada", password_hash="x"))
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from schoolauth.infrastructure.database.exceptions import DatabaseError, classify_error

if TYPE_CHECKING:
    from schoolauth.core.config.settings import DatabaseSettings, Settings

# Module-level state for the shared connection
_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


def _enable_sqlite_constraints(engine: AsyncEngine) -> None:
    """Turn on foreign keys and transactional DDL for SQLite connections.

    The driver's own BEGIN handling skips DDL statements, so BEGIN is
    emitted explicitly when SQLAlchemy starts a transaction.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def create_engine_for_url(
    url: str,
    *,
    echo: bool = False,
    pool_size: Optional[int] = None,
    max_overflow: Optional[int] = None,
) -> AsyncEngine:
    """Create an async engine for the given URL.

    Args:
        url: SQLAlchemy async database URL.
        echo: Echo emitted SQL.
        pool_size: Connection pool size (ignored for SQLite).
        max_overflow: Maximum overflow connections (ignored for SQLite).

    Returns:
        A configured AsyncEngine.

    Raises:
        DatabaseError: If the engine cannot be created.
    """
    is_sqlite = url.startswith("sqlite")
    options: dict[str, Any] = {"echo": echo}
    if not is_sqlite:
        options["pool_pre_ping"] = True
        options["pool_recycle"] = 1800
        if pool_size is not None:
            options["pool_size"] = pool_size
        if max_overflow is not None:
            options["max_overflow"] = max_overflow

    try:
        engine = create_async_engine(url, **options)
    except (SQLAlchemyError, ImportError) as e:
        raise DatabaseError("Failed to create database engine", e) from e

    if is_sqlite:
        _enable_sqlite_constraints(engine)
    return engine


def create_database_engine(settings: "DatabaseSettings") -> AsyncEngine:
    """Create an async engine from database settings."""
    return create_engine_for_url(
        settings.async_url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )


async def init_database(settings: "Settings") -> None:
    """Initialize the shared database engine and sessionmaker.

    Args:
        settings: Application settings containing database configuration.

    Raises:
        DatabaseError: If engine creation fails.
    """
    global _engine, _sessionmaker

    _engine = create_database_engine(settings.database)
    _sessionmaker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def close_database() -> None:
    """Dispose of the shared engine."""
    global _engine, _sessionmaker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None


def get_engine() -> AsyncEngine:
    """Get the shared async engine.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _engine is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get the shared sessionmaker.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _sessionmaker is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _sessionmaker


@asynccontextmanager
async def get_session(
    sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """Get an async session, committed on success and rolled back on error.

    Driver errors are translated: a violated unique, primary or foreign
    key raises ConstraintViolation, a lost connection raises
    ConnectionFailure.

    Args:
        sessionmaker: Sessionmaker to use instead of the shared one.

    Yields:
        AsyncSession for database operations.

    Raises:
        DatabaseError: If the database has not been initialized or
            if a database operation fails.
    """
    maker = sessionmaker or get_sessionmaker()

    async with maker() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise classify_error(e) from e
        except Exception:
            await session.rollback()
            raise


async def check_database_connection(engine: Optional[AsyncEngine] = None) -> bool:
    """Check if the database is reachable.

    Returns:
        True if a trivial query succeeds, False otherwise.
    """
    engine = engine or _engine
    if engine is None:
        return False

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError):
        return False
