"""
Domain models for pgrefetch.

Defines the per-table model descriptor consumed by the update workflow, the
declarative statement produced by the converter, and the native query produced
by the compiler. Statements and native queries are immutable once built.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, TypedDict, Union

from pydantic import BaseModel, Field

from pgrefetch.errors import NoPrimaryKeyError

DEFAULT_SCHEMA_NAME = "public"

Operation = Literal["find", "update"]
QueryKind = Literal["select", "update"]
Record = Dict[str, Any]


class ModelDescriptor(BaseModel):
    """
    Per-table metadata: primary key, declared column types and schema namespace.
    """

    primary_key: Union[str, List[str], None] = Field(
        None, description="Primary-key column; a list is accepted but must hold one name."
    )
    db_schema: Dict[str, str] = Field(
        default_factory=dict, description="Column name -> declared type."
    )
    schema_name: str = Field(
        DEFAULT_SCHEMA_NAME, description="PostgreSQL schema the table lives in."
    )

    model_config = {"frozen": True}


def find_primary_key(model: ModelDescriptor) -> str:
    """
    Return the single primary-key column of `model`.

    Raises
    ------
    NoPrimaryKeyError
        If no primary key is declared, several are declared, or the declared
        column is not part of the model's schema.
    """
    primary_key = model.primary_key
    if isinstance(primary_key, list):
        if len(primary_key) > 1:
            raise NoPrimaryKeyError(
                f"Ambiguous primary key: expected one column, got {primary_key!r}."
            )
        primary_key = primary_key[0] if primary_key else None

    if not primary_key:
        raise NoPrimaryKeyError("Error determining Primary Key to use.")

    if model.db_schema and primary_key not in model.db_schema:
        raise NoPrimaryKeyError(
            f"Primary key '{primary_key}' is not a column of the model schema."
        )
    return primary_key


@dataclass(frozen=True)
class Statement:
    """Driver-agnostic description of one find or update against one table."""

    operation: Operation
    table: str
    schema_name: str = DEFAULT_SCHEMA_NAME
    where: Mapping[str, Any] = field(default_factory=dict)
    values: Optional[Mapping[str, Any]] = None
    limit: Optional[int] = None
    skip: Optional[int] = None
    sort: Tuple[Tuple[str, str], ...] = ()
    # Compiles to an always-false predicate regardless of `where`.
    match_none: bool = False
    # Column name -> declared type; decides how list values are bound.
    column_types: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NativeQuery:
    """SQL text plus its positional parameters, ready for the driver."""

    sql: str
    params: Tuple[Any, ...] = ()


class UpdateReport(TypedDict):
    num_records: int


RowSet = Union[List[Record], UpdateReport]


__all__ = [
    "DEFAULT_SCHEMA_NAME",
    "ModelDescriptor",
    "NativeQuery",
    "Operation",
    "QueryKind",
    "Record",
    "RowSet",
    "Statement",
    "UpdateReport",
    "find_primary_key",
]
