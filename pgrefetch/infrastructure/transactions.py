"""
Connection and transaction lifecycle for the update workflow.

`TransactionManager` checks connections out of an async pool, opens a
transaction on them, and guarantees each connection goes back to the pool
exactly once: through `commit_and_release` on success or `rollback_and_release`
on failure. Cleanup failures are logged and never replace the error that
triggered them.

Connection acquisition is retried with tenacity for transient pool/driver
errors; nothing after acquisition is ever retried.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import psycopg
from psycopg_pool import PoolClosed, PoolTimeout
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pgrefetch.config import IsolationLevel, Settings, get_settings
from pgrefetch.errors import BadConnectionError, CommitError, TransactionError
from pgrefetch.utils.logging import get_logger

log = get_logger(__name__)

ISOLATION_LEVELS = ("read committed", "repeatable read", "serializable")


class TransactionManager:
    """
    Acquire, begin, commit/rollback and release pooled connections.

    The manager keeps no per-call state, so concurrent `update` invocations can
    share one instance; each invocation owns the connection it acquired.

    Parameters
    ----------
    pool
        An opened ``psycopg_pool.AsyncConnectionPool`` (or anything exposing
        ``getconn()``/``putconn()`` coroutines) handing out autocommit connections.
    isolation_level : str
        Level passed to ``BEGIN ISOLATION LEVEL``.
    statement_timeout_ms : int
        When positive, applied to every transaction with ``SET LOCAL``.
    acquire_attempts : int
        Attempts made to check a connection out of the pool.
    acquire_timeout : float | None
        Seconds to wait for a free connection; None uses the pool default.
    """

    def __init__(
        self,
        pool: Any,
        isolation_level: IsolationLevel = "read committed",
        statement_timeout_ms: int = 0,
        acquire_attempts: int = 1,
        acquire_timeout: Optional[float] = None,
    ) -> None:
        if isolation_level not in ISOLATION_LEVELS:
            raise ValueError(
                f"Unsupported isolation level '{isolation_level}'. "
                f"Available: {', '.join(ISOLATION_LEVELS)}"
            )
        if acquire_attempts < 1:
            raise ValueError("acquire_attempts must be at least 1")
        self._pool = pool
        self.isolation_level = isolation_level
        self.statement_timeout_ms = statement_timeout_ms
        self.acquire_attempts = acquire_attempts
        self.acquire_timeout = acquire_timeout

    @classmethod
    def from_settings(cls, pool: Any, settings: Optional[Settings] = None) -> "TransactionManager":
        settings = settings or get_settings()
        return cls(
            pool,
            isolation_level=settings.db_isolation_level,
            statement_timeout_ms=settings.db_statement_timeout_ms,
            acquire_attempts=settings.db_acquire_attempts,
        )

    async def acquire(self) -> Any:
        """
        Check a connection out of the pool.

        Raises
        ------
        BadConnectionError
            If no connection could be obtained after all attempts.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.acquire_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            retry=(
                retry_if_exception_type((PoolTimeout, psycopg.OperationalError))
                & retry_if_not_exception_type(PoolClosed)
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    conn = await self._pool.getconn(timeout=self.acquire_timeout)
        except (psycopg.Error, OSError) as exc:
            log.error("[CONNECTION FAILED] Could not acquire a connection", exc_info=True)
            raise BadConnectionError(f"Could not acquire a connection: {exc}") from exc
        return conn

    async def release(self, conn: Any) -> None:
        """Return `conn` to the pool; a failure here is logged, never raised."""
        try:
            await self._pool.putconn(conn)
        except Exception:  # noqa: BLE001 - best-effort cleanup
            log.warning("[CONNECTION RELEASE FAILED]", exc_info=True)

    async def begin(self, conn: Any) -> None:
        """
        Open a transaction on `conn`.

        On failure the connection is released before the error is raised, and
        the raised `TransactionError` is chained to the driver error.
        """
        try:
            await conn.execute(f"BEGIN ISOLATION LEVEL {self.isolation_level.upper()}")
            if self.statement_timeout_ms > 0:
                await conn.execute(
                    f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}"
                )
        except psycopg.Error as exc:
            log.error("[TXN BEGIN FAILED]", exc_info=True)
            await self.release(conn)
            raise TransactionError(f"Could not open a transaction: {exc}") from exc
        except BaseException:
            await self.release(conn)
            raise
        log.debug("[TXN BEGIN]", extra={"isolation_level": self.isolation_level})

    async def commit_and_release(self, conn: Any) -> None:
        """
        Commit the open transaction and release `conn` whatever the outcome.

        Raises
        ------
        CommitError
            If COMMIT failed; the connection has already been released.
        """
        try:
            await conn.execute("COMMIT")
        except psycopg.Error as exc:
            log.error("[TXN COMMIT FAILED]", exc_info=True)
            raise CommitError(f"Could not commit the transaction: {exc}") from exc
        finally:
            await self.release(conn)
        log.debug("[TXN COMMIT]")

    async def rollback_and_release(self, conn: Any) -> None:
        """Roll back and release `conn`. Best effort: never raises."""
        try:
            await conn.execute("ROLLBACK")
        except Exception:  # noqa: BLE001 - must not mask the triggering error
            log.warning("[TXN ROLLBACK FAILED]", exc_info=True)
        else:
            log.debug("[TXN ROLLBACK]")
        finally:
            await self.release(conn)

    async def spawn_transaction(self) -> Any:
        """Acquire a connection and open a transaction on it."""
        conn = await self.acquire()
        await self.begin(conn)
        return conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Any]:
        """
        Yield a connection with an open transaction.

        Commits and releases on normal exit. On any exception, including
        cancellation, rolls back and releases, then re-raises the original error.

        Example
        -------
            async with manager.transaction() as conn:
                await conn.execute("UPDATE ...")
        """
        conn = await self.spawn_transaction()
        try:
            yield conn
        except BaseException:
            await self.rollback_and_release(conn)
            raise
        await self.commit_and_release(conn)


__all__ = ["ISOLATION_LEVELS", "TransactionManager"]
