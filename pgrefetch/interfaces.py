"""
Collaborator interfaces consumed by the update orchestrator.

The default implementations live in `pgrefetch.query` and `pgrefetch.normalizer`;
anything satisfying these protocols (including test spies) can be injected.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from pgrefetch.domain.models import (
    DEFAULT_SCHEMA_NAME,
    NativeQuery,
    Operation,
    QueryKind,
    Record,
    RowSet,
    Statement,
)


@runtime_checkable
class StatementConverter(Protocol):
    def convert(
        self,
        table: str,
        operation: Operation,
        criteria: Mapping[str, Any],
        values: Optional[Mapping[str, Any]] = None,
        schema_name: str = DEFAULT_SCHEMA_NAME,
    ) -> Statement:
        """
        Turn criteria (and values, for updates) into a declarative statement.

        Raises
        ------
        ConversionError
            If the criteria or values are malformed.
        """
        ...


@runtime_checkable
class StatementCompiler(Protocol):
    def compile(self, statement: Statement) -> NativeQuery:
        """
        Compile a declarative statement into SQL text and parameters.

        Raises
        ------
        CompileError
            If the statement cannot be expressed as SQL.
        """
        ...


@runtime_checkable
class Executor(Protocol):
    async def run(self, conn: Any, query: NativeQuery, kind: QueryKind) -> RowSet:
        """Send `query` over `conn` and shape the result according to `kind`."""
        ...


@runtime_checkable
class ValueNormalizer(Protocol):
    def normalize(self, schema: Mapping[str, str], records: Sequence[Record]) -> List[Record]:
        """Cast raw driver rows into records typed per `schema`."""
        ...


__all__ = [
    "Executor",
    "StatementCompiler",
    "StatementConverter",
    "ValueNormalizer",
]
