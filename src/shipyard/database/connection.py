"""Database connection management for Shipyard.

This module provides factory functions for creating SQLAlchemy async engines
and session factories, configured from the application's DatabaseConfig.

PostgreSQL (asyncpg) is the production driver and gets connection pooling
with configurable pool size and overflow limits. SQLite (aiosqlite) is
supported for single-node use and tests; foreign key enforcement is switched
on for every SQLite connection so cascade deletes behave as on PostgreSQL.
SQLite transactions are begun explicitly by SQLAlchemy rather than by the
driver, which is what lets SAVEPOINTs (``session.begin_nested()``) nest
inside the request transaction.

Example usage:
    >>> from shipyard.config import DatabaseConfig
    >>> from shipyard.database.connection import get_engine, get_session_factory
    >>>
    >>> config = DatabaseConfig(url="postgresql+asyncpg://localhost/shipyard")
    >>> engine = get_engine(config)
    >>> SessionFactory = get_session_factory(engine)
    >>>
    >>> async with SessionFactory() as session, session.begin():
    ...     result = await session.execute(select(Release))
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shipyard.config import DatabaseConfig


def _configure_sqlite_connection(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # Stop the driver from issuing its own BEGIN; _begin_sqlite_transaction does.
    dbapi_connection.isolation_level = None


def _begin_sqlite_transaction(connection: Any) -> None:
    connection.exec_driver_sql("BEGIN")


def configure_sqlite(engine: AsyncEngine) -> None:
    """Enable foreign keys and SAVEPOINT-safe transactions on a SQLite engine.

    Args:
        engine: Async engine bound to a SQLite database.
    """
    event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)
    event.listen(engine.sync_engine, "begin", _begin_sqlite_transaction)


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    Configures connection pooling using the pool_size and max_overflow
    settings from DatabaseConfig for server databases. SQLite URLs use the
    dialect's default pool and get foreign keys and explicit transactions.

    Args:
        config: Database configuration containing URL, pool settings,
                and SQL echo preference.

    Returns:
        Configured AsyncEngine instance.
    """
    if config.url.startswith("sqlite"):
        engine = create_async_engine(config.url, echo=config.echo)
        configure_sqlite(engine)
        return engine

    return create_async_engine(
        config.url,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        echo=config.echo,
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    The returned factory produces AsyncSession instances configured with:
    - expire_on_commit=False to allow accessing attributes after commit
      without triggering lazy loads (important for async contexts)

    Args:
        engine: AsyncEngine to bind sessions to.

    Returns:
        Configured async_sessionmaker that produces AsyncSession instances.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
