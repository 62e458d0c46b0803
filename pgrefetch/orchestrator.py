"""
Update matching rows and return them as they look after the update.

The UPDATE as issued here has no RETURNING clause, so the orchestrator emulates
one inside a single transaction:

1. SELECT the rows matching the criteria (pre-image) and remember their
   primary keys.
2. Run the UPDATE.
3. SELECT the rows again by primary key (post-image).

Usage:
    from pgrefetch.orchestrator import UpdateOrchestrator

    orchestrator = UpdateOrchestrator(manager)
    records = await orchestrator.update("users", model, {"id": 1}, {"name": "Bob"})
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Mapping, Optional, Sequence

from pgrefetch.domain.models import (
    ModelDescriptor,
    NativeQuery,
    QueryKind,
    Record,
    RowSet,
    Statement,
    find_primary_key,
)
from pgrefetch.errors import ConfigurationError, NoPrimaryKeyError
from pgrefetch.executor import QueryExecutor
from pgrefetch.infrastructure.transactions import TransactionManager
from pgrefetch.interfaces import Executor, StatementCompiler, StatementConverter, ValueNormalizer
from pgrefetch.normalizer import SchemaNormalizer
from pgrefetch.query.compiler import PostgresCompiler
from pgrefetch.query.converter import CriteriaConverter
from pgrefetch.utils.logging import get_logger

log = get_logger(__name__)


def refetch_statement(
    table: str, schema_name: str, primary_key: str, keys: Sequence[Any]
) -> Statement:
    """
    Build ``select * from <table> where <primary_key> in <keys>``.

    An empty key set produces an explicit always-false statement instead of
    an empty IN list.
    """
    if not keys:
        return Statement(
            operation="find", table=table, schema_name=schema_name, match_none=True
        )
    return Statement(
        operation="find",
        table=table,
        schema_name=schema_name,
        where={primary_key: {"in": list(keys)}},
    )


class UpdateOrchestrator:
    """
    Sequence find -> update -> refetch inside one transaction.

    Collaborators default to the PostgreSQL implementations shipped with the
    package and can be replaced by anything honouring `pgrefetch.interfaces`.
    """

    def __init__(
        self,
        manager: TransactionManager,
        converter: Optional[StatementConverter] = None,
        compiler: Optional[StatementCompiler] = None,
        executor: Optional[Executor] = None,
        normalizer: Optional[ValueNormalizer] = None,
    ) -> None:
        self.manager = manager
        self.converter = converter or CriteriaConverter()
        self.compiler = compiler or PostgresCompiler()
        self.executor = executor or QueryExecutor()
        self.normalizer = normalizer or SchemaNormalizer()

    async def _run(self, conn: Any, statement: Statement, kind: QueryKind) -> RowSet:
        query: NativeQuery = self.compiler.compile(statement)
        return await self.executor.run(conn, query, kind)

    async def update(
        self,
        table: str,
        model: Optional[ModelDescriptor],
        criteria: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> List[Record]:
        """
        Update every row of `table` matching `criteria` and return the updated rows.

        Raises
        ------
        ConfigurationError
            No model, or the model lacks a single primary key. Nothing was opened.
        ConversionError
            Criteria or values are malformed. Nothing was opened.
        BadConnectionError
            No connection or no transaction could be obtained.
        QueryError
            A statement failed; the transaction was rolled back.
        CommitError
            COMMIT failed after every statement succeeded.
        """
        if model is None:
            raise ConfigurationError(f"No model is registered for table '{table}'.")
        primary_key = find_primary_key(model)

        find_statement = self.converter.convert(
            table, "find", criteria, schema_name=model.schema_name
        )
        update_statement = self.converter.convert(
            table, "update", criteria, values, schema_name=model.schema_name
        )
        find_statement = replace(find_statement, column_types=model.db_schema)
        update_statement = replace(update_statement, column_types=model.db_schema)

        log.info(f"[UPDATE START] {table}", extra={"table": table, "primary_key": primary_key})
        async with self.manager.transaction() as conn:
            pre_image = await self._run(conn, find_statement, "select")
            try:
                keys = [row[primary_key] for row in pre_image]
            except KeyError as exc:
                raise NoPrimaryKeyError(
                    f"Rows of '{table}' do not carry the primary key column '{primary_key}'."
                ) from exc

            await self._run(conn, update_statement, "update")

            post_image = await self._run(
                conn, refetch_statement(table, model.schema_name, primary_key, keys), "select"
            )

        records = self.normalizer.normalize(model.db_schema, post_image)
        log.info(
            f"[UPDATE COMMITTED] {table}",
            extra={"table": table, "matched": len(keys), "records": len(records)},
        )
        return records


async def update(
    datastore: Any,
    table: str,
    criteria: Mapping[str, Any],
    values: Mapping[str, Any],
) -> List[Record]:
    """Update rows of `table` through `datastore` (see `Datastore.update`)."""
    return await datastore.update(table, criteria, values)


__all__ = ["UpdateOrchestrator", "refetch_statement", "update"]
