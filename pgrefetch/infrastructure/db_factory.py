"""
Database connection factory utilities for pgrefetch.

Builds the DSN from settings and creates the psycopg async connection pool the
transaction manager checks connections out of. Pooled connections run in
autocommit mode; transactions are opened explicitly with BEGIN so the
transaction boundaries are visible in the statement stream.
"""

from __future__ import annotations

from typing import Optional

from psycopg_pool import AsyncConnectionPool

from pgrefetch.config import Settings, get_settings


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def create_async_pool(
    settings: Optional[Settings] = None,
    dsn_override: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Create (but do not open) the asynchronous connection pool.

    Parameters
    ----------
    settings : Settings | None
        Source of pool sizing and credentials. Defaults to the cached settings.
    dsn_override : str | None
        Connect to this DSN instead of the one built from settings.

    Returns
    -------
    AsyncConnectionPool
        A closed pool; call ``await pool.open()`` inside the running event loop.
    """
    settings = settings or get_settings()
    return AsyncConnectionPool(
        conninfo=dsn_override or build_dsn(settings),
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        open=False,
        kwargs={"autocommit": True},
    )


__all__ = ["build_dsn", "create_async_pool"]
