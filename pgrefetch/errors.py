"""
Error taxonomy for the update-and-refetch workflow.

Every failure surfaced by `update` is exactly one of these classes. The `kind`
tag lets callers tell "nothing happened" (configuration, criteria, connection)
apart from "rolled back" (query) and "fate unknown" (commit) without matching
on class names.
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Optional


class AdapterError(Exception):
    """Base class for all errors raised by pgrefetch."""

    kind: ClassVar[str] = "error"


class ConfigurationError(AdapterError):
    """A model is missing from the datastore or is described incorrectly."""

    kind: ClassVar[str] = "invalidConfiguration"


class NoPrimaryKeyError(ConfigurationError):
    """The model descriptor does not name exactly one primary-key column."""


class ConversionError(AdapterError):
    """The criteria or values could not be turned into a statement."""

    kind: ClassVar[str] = "invalidCriteria"


class BadConnectionError(AdapterError):
    """A connection could not be obtained from the pool."""

    kind: ClassVar[str] = "badConnection"


class TransactionError(BadConnectionError):
    """A connection was obtained but the transaction could not be opened."""


class QueryError(AdapterError):
    """
    A statement failed to compile or execute inside the transaction.

    The transaction has been rolled back by the time a caller sees this error.
    `footprint` classifies driver failures, e.g. ``{"identity": "notUnique",
    "keys": ["email"]}`` for unique-constraint violations.
    """

    kind: ClassVar[str] = "queryError"

    def __init__(self, message: str, footprint: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.footprint: Dict[str, Any] = footprint or {"identity": "catchall"}


class CompileError(QueryError):
    """A declarative statement could not be compiled into a native query."""


class CommitError(AdapterError):
    """
    COMMIT failed after every query succeeded.

    The connection has been released, but whether the mutation is durable is
    unknown to the caller.
    """

    kind: ClassVar[str] = "commitError"


__all__ = [
    "AdapterError",
    "BadConnectionError",
    "CommitError",
    "CompileError",
    "ConfigurationError",
    "ConversionError",
    "NoPrimaryKeyError",
    "QueryError",
    "TransactionError",
]
