"""
Criteria -> declarative statement conversion.

Accepts either a bare where-clause (``{"id": 1}``) or a full criteria object
(``{"where": {...}, "limit": 10, "skip": 0, "sort": [...]}``) and validates the
predicate tree before anything touches the database. Statements get a deep copy
of the caller's criteria and values.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pgrefetch.domain.models import DEFAULT_SCHEMA_NAME, Operation, Statement
from pgrefetch.errors import ConversionError

CRITERIA_KEYS = frozenset({"where", "limit", "skip", "sort"})
LOGICAL_KEYS = frozenset({"and", "or"})
MODIFIERS = frozenset(
    {"in", "nin", "<", "<=", ">", ">=", "!=", "like", "contains", "startsWith", "endsWith"}
)
_LIST_MODIFIERS = frozenset({"in", "nin"})
_STRING_MODIFIERS = frozenset({"like", "contains", "startsWith", "endsWith"})


def _is_full_criteria(criteria: Mapping[str, Any]) -> bool:
    return bool(criteria) and set(criteria).issubset(CRITERIA_KEYS)


def _validate_where(where: Any, path: str = "where") -> None:
    if not isinstance(where, Mapping):
        raise ConversionError(f"{path} must be a mapping, got {type(where).__name__}.")

    for key, value in where.items():
        if not isinstance(key, str) or not key:
            raise ConversionError(f"{path} contains an invalid column name: {key!r}.")

        if key in LOGICAL_KEYS:
            if not isinstance(value, list):
                raise ConversionError(f"{path}.{key} must be a list of predicates.")
            for index, clause in enumerate(value):
                _validate_where(clause, f"{path}.{key}[{index}]")
            continue

        if isinstance(value, Mapping):
            if not value:
                raise ConversionError(f"{path}.{key} has an empty modifier object.")
            for modifier, operand in value.items():
                if modifier not in MODIFIERS:
                    raise ConversionError(f"{path}.{key} uses unknown modifier '{modifier}'.")
                if modifier in _LIST_MODIFIERS and not isinstance(operand, (list, tuple)):
                    raise ConversionError(f"{path}.{key}.{modifier} must be a list.")
                if modifier in _STRING_MODIFIERS and not isinstance(operand, str):
                    raise ConversionError(f"{path}.{key}.{modifier} must be a string.")
        elif isinstance(value, list):
            raise ConversionError(
                f"{path}.{key} is a list; use {{'in': [...]}} to match several values."
            )


def _normalize_sort(sort: Any) -> Tuple[Tuple[str, str], ...]:
    """Accept "col DESC", {"col": "ASC"}, or a list of either."""
    if sort is None:
        return ()
    items = sort if isinstance(sort, list) else [sort]
    normalized: List[Tuple[str, str]] = []
    for item in items:
        if isinstance(item, str):
            parts = item.split()
            column = parts[0] if parts else ""
            direction = parts[1] if len(parts) > 1 else "ASC"
            pairs = [(column, direction)]
        elif isinstance(item, Mapping):
            pairs = list(item.items())
        else:
            raise ConversionError(f"Unsupported sort clause: {item!r}.")
        for column, direction in pairs:
            direction = str(direction).upper()
            if not column or direction not in ("ASC", "DESC"):
                raise ConversionError(f"Unsupported sort clause: {item!r}.")
            normalized.append((column, direction))
    return tuple(normalized)


def _non_negative_int(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConversionError(f"{name} must be a non-negative integer, got {value!r}.")
    return value


class CriteriaConverter:
    """Default statement converter for find and update operations."""

    def convert(
        self,
        table: str,
        operation: Operation,
        criteria: Mapping[str, Any],
        values: Optional[Mapping[str, Any]] = None,
        schema_name: str = DEFAULT_SCHEMA_NAME,
    ) -> Statement:
        if not table:
            raise ConversionError("A table name is required.")
        if operation not in ("find", "update"):
            raise ConversionError(f"Unsupported operation '{operation}'.")
        if criteria is None:
            criteria = {}
        if not isinstance(criteria, Mapping):
            raise ConversionError(f"Criteria must be a mapping, got {type(criteria).__name__}.")

        if _is_full_criteria(criteria):
            where = criteria.get("where") or {}
            limit = _non_negative_int("limit", criteria.get("limit"))
            skip = _non_negative_int("skip", criteria.get("skip"))
            sort = _normalize_sort(criteria.get("sort"))
        else:
            where, limit, skip, sort = criteria, None, None, ()

        _validate_where(where)

        if operation == "find":
            return Statement(
                operation="find",
                table=table,
                schema_name=schema_name,
                where=copy.deepcopy(dict(where)),
                limit=limit,
                skip=skip,
                sort=sort,
            )

        if limit is not None or skip is not None or sort:
            raise ConversionError("Update criteria cannot use limit, skip or sort.")
        if not isinstance(values, Mapping) or not values:
            raise ConversionError("Update requires at least one value to set.")
        bad_columns = [key for key in values if not isinstance(key, str) or not key]
        if bad_columns:
            raise ConversionError(f"Invalid column names in values: {bad_columns!r}.")

        new_values: Dict[str, Any] = copy.deepcopy(dict(values))
        return Statement(
            operation="update",
            table=table,
            schema_name=schema_name,
            where=copy.deepcopy(dict(where)),
            values=new_values,
        )


__all__ = ["CriteriaConverter"]
