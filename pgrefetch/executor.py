"""
Query execution over an already-acquired connection.

The executor is stateless: it neither opens nor ends transactions and never
releases the connection, so it works the same inside the update transaction
and for one-off calls. Rolling back after a failure is the caller's job.
"""

from __future__ import annotations

import re
from typing import Any, Dict

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from pgrefetch.domain.models import NativeQuery, QueryKind, RowSet, UpdateReport
from pgrefetch.errors import QueryError
from pgrefetch.utils.logging import get_logger

log = get_logger(__name__)

QUERY_KINDS = ("select", "update")

_UNIQUE_KEYS_RE = re.compile(r"Key \((.*)\)=")


def _footprint(exc: psycopg.Error) -> Dict[str, Any]:
    """Classify a driver error."""
    if isinstance(exc, pg_errors.UniqueViolation):
        detail = exc.diag.message_detail or ""
        match = _UNIQUE_KEYS_RE.search(detail)
        keys = [key.strip().strip('"') for key in match.group(1).split(",")] if match else []
        return {"identity": "notUnique", "keys": keys}
    return {"identity": "catchall"}


class QueryExecutor:
    """Run native queries and shape the driver result by query kind."""

    async def run(self, conn: Any, query: NativeQuery, kind: QueryKind) -> RowSet:
        """
        Execute `query` on `conn`.

        Parameters
        ----------
        conn
            A psycopg ``AsyncConnection``.
        query : NativeQuery
            SQL text and parameters.
        kind : {"select", "update"}
            ``select`` returns the rows as dicts; ``update`` returns
            ``{"num_records": <affected rows>}``.

        Raises
        ------
        QueryError
            If the driver reports any error.
        """
        if kind not in QUERY_KINDS:
            raise ValueError(f"Unknown query kind '{kind}'. Available: {', '.join(QUERY_KINDS)}")

        log.debug(f"[QUERY] {kind}", extra={"sql": query.sql, "params": len(query.params)})
        try:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query.sql, query.params or None)
                if kind == "select":
                    return list(await cur.fetchall())
                return UpdateReport(num_records=cur.rowcount)
        except psycopg.Error as exc:
            footprint = _footprint(exc)
            log.warning(
                f"[QUERY FAILED] {kind}",
                extra={"sql": query.sql, "identity": footprint["identity"]},
            )
            raise QueryError(str(exc), footprint=footprint) from exc


__all__ = ["QUERY_KINDS", "QueryExecutor"]
