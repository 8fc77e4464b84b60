"""Async engine and session factory construction.

One engine (and therefore one connection pool) is shared by every tenant;
isolation comes from the per-request search path, not from separate pools.
"""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from schema_tenancy.config import Settings


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create the shared async engine with a bounded connection pool.

    ``pool_timeout`` is the acquisition bound: a checkout that waits longer
    raises ``sqlalchemy.exc.TimeoutError`` instead of hanging.
    """
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
        echo=False,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for short-lived sessions on shared tables."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def is_disconnect(exc: BaseException) -> bool:
    """The connection in use was lost (SQLAlchemy has already invalidated it)."""
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def is_connection_unavailable(exc: BaseException) -> bool:
    """No usable connection: pool checkout timed out, connect failed, or dropped.

    Query errors on a healthy connection (missing table, bad SQL) are not.
    """
    return isinstance(exc, PoolTimeoutError | OperationalError) or is_disconnect(exc)
