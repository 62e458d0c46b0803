"""
Domain package for pgrefetch.

Exports the model descriptor and the statement/query value types shared by the
converter, compiler, executor and orchestrator.
"""

from pgrefetch.domain.models import (
    DEFAULT_SCHEMA_NAME,
    ModelDescriptor,
    NativeQuery,
    Record,
    RowSet,
    Statement,
    find_primary_key,
)

__all__ = [
    "DEFAULT_SCHEMA_NAME",
    "ModelDescriptor",
    "NativeQuery",
    "Record",
    "RowSet",
    "Statement",
    "find_primary_key",
]
