"""
Declarative statement -> PostgreSQL query compilation.

Produces SQL text with psycopg ``%s`` placeholders and an ordered parameter
tuple. Identifiers are always double-quoted and tables are schema-qualified.
``in`` and ``nin`` lists bind as a single array parameter (``= ANY`` and
``<> ALL``), so the key count never hits the server's bind-parameter limit.
Empty ``in`` lists compile to ``FALSE`` and empty ``nin`` lists to ``TRUE``.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional

from psycopg.types.json import Jsonb

from pgrefetch.domain.models import NativeQuery, Statement
from pgrefetch.errors import CompileError

_COMPARISONS = {"<": "<", "<=": "<=", ">": ">", ">=": ">="}


def quote_identifier(name: str) -> str:
    if not isinstance(name, str) or not name:
        raise CompileError(f"Invalid identifier: {name!r}.")
    # psycopg scans the whole query for placeholders, identifiers included.
    return '"' + name.replace('"', '""').replace("%", "%%") + '"'


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _adapt(value: Any, column_type: Optional[str] = None) -> Any:
    # Lists stay native arrays unless the column is declared json.
    if isinstance(value, dict) or (isinstance(value, list) and column_type == "json"):
        return Jsonb(value)
    return value


class PostgresCompiler:
    """Default statement compiler targeting PostgreSQL via psycopg."""

    def compile(self, statement: Statement) -> NativeQuery:
        params: List[Any] = []
        types = statement.column_types
        table = f"{quote_identifier(statement.schema_name)}.{quote_identifier(statement.table)}"

        if statement.operation == "find":
            sql = f"SELECT * FROM {table}"
            sql += self._where_clause(statement, params)
            if statement.sort:
                order = ", ".join(
                    f"{quote_identifier(column)} {self._direction(direction)}"
                    for column, direction in statement.sort
                )
                sql += f" ORDER BY {order}"
            if statement.limit is not None:
                sql += " LIMIT %s"
                params.append(statement.limit)
            if statement.skip:
                sql += " OFFSET %s"
                params.append(statement.skip)
        elif statement.operation == "update":
            if not statement.values:
                raise CompileError("An update statement requires values to set.")
            assignments = []
            for column, value in statement.values.items():
                assignments.append(f"{quote_identifier(column)} = %s")
                params.append(_adapt(value, types.get(column)))
            sql = f"UPDATE {table} SET {', '.join(assignments)}"
            sql += self._where_clause(statement, params)
        else:
            raise CompileError(f"Unsupported operation '{statement.operation}'.")

        return NativeQuery(sql=sql, params=tuple(params))

    @staticmethod
    def _direction(direction: str) -> str:
        normalized = direction.upper()
        if normalized not in ("ASC", "DESC"):
            raise CompileError(f"Invalid sort direction: {direction!r}.")
        return normalized

    def _where_clause(self, statement: Statement, params: List[Any]) -> str:
        if statement.match_none:
            return " WHERE FALSE"
        if not statement.where:
            return ""
        return f" WHERE {self._predicate(statement.where, params, statement.column_types)}"

    def _predicate(
        self, where: Mapping[str, Any], params: List[Any], types: Mapping[str, str]
    ) -> str:
        clauses: List[str] = []
        for key, value in where.items():
            if key == "and":
                clauses.append(self._logical(value, "AND", "TRUE", params, types))
            elif key == "or":
                clauses.append(self._logical(value, "OR", "FALSE", params, types))
            elif isinstance(value, Mapping):
                for modifier, operand in value.items():
                    clauses.append(self._modifier(key, modifier, operand, params, types))
            elif value is None:
                clauses.append(f"{quote_identifier(key)} IS NULL")
            else:
                clauses.append(f"{quote_identifier(key)} = %s")
                params.append(_adapt(value, types.get(key)))

        if not clauses:
            return "TRUE"
        if len(clauses) == 1:
            return clauses[0]
        return " AND ".join(f"({clause})" for clause in clauses)

    def _logical(
        self, items: Any, joiner: str, empty: str, params: List[Any], types: Mapping[str, str]
    ) -> str:
        if not isinstance(items, (list, tuple)):
            raise CompileError(f"'{joiner.lower()}' expects a list of predicates.")
        if not items:
            return empty
        return f" {joiner} ".join(
            f"({self._predicate(item, params, types)})" for item in items
        )

    def _modifier(
        self,
        column: str,
        modifier: str,
        operand: Any,
        params: List[Any],
        types: Mapping[str, str],
    ) -> str:
        name = quote_identifier(column)

        if modifier in ("in", "nin"):
            if not isinstance(operand, (list, tuple)):
                raise CompileError(f"'{modifier}' on {column} expects a list.")
            if not operand:
                return "FALSE" if modifier == "in" else "TRUE"
            params.append(list(operand))
            if modifier == "in":
                return f"{name} = ANY(%s)"
            return f"{name} <> ALL(%s)"

        if modifier == "!=":
            if operand is None:
                return f"{name} IS NOT NULL"
            params.append(_adapt(operand, types.get(column)))
            return f"{name} <> %s"

        if modifier in _COMPARISONS:
            params.append(operand)
            return f"{name} {_COMPARISONS[modifier]} %s"

        if modifier == "like":
            params.append(operand)
            return f"{name} LIKE %s"
        if modifier == "contains":
            params.append(f"%{_escape_like(operand)}%")
            return f"{name} LIKE %s"
        if modifier == "startsWith":
            params.append(f"{_escape_like(operand)}%")
            return f"{name} LIKE %s"
        if modifier == "endsWith":
            params.append(f"%{_escape_like(operand)}")
            return f"{name} LIKE %s"

        raise CompileError(f"Unknown modifier '{modifier}' on {column}.")


__all__ = ["PostgresCompiler", "quote_identifier"]
