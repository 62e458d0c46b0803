"""
pgrefetch - transactional update-and-refetch for PostgreSQL.

Updates every row matching a criteria object and returns those rows as they
look after the update, without relying on UPDATE ... RETURNING:

- the matching rows are selected first and their primary keys remembered,
- the UPDATE runs,
- the rows are selected again by primary key,

all inside one transaction whose connection is released exactly once, on the
commit path or on the rollback path.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from pgrefetch.config import Settings, get_settings
from pgrefetch.datastore import Datastore, load_models
from pgrefetch.domain.models import (
    DEFAULT_SCHEMA_NAME,
    ModelDescriptor,
    NativeQuery,
    Statement,
    find_primary_key,
)
from pgrefetch.errors import (
    AdapterError,
    BadConnectionError,
    CommitError,
    CompileError,
    ConfigurationError,
    ConversionError,
    NoPrimaryKeyError,
    QueryError,
    TransactionError,
)
from pgrefetch.executor import QueryExecutor
from pgrefetch.infrastructure.transactions import TransactionManager
from pgrefetch.normalizer import SchemaNormalizer
from pgrefetch.query import CriteriaConverter, PostgresCompiler
from pgrefetch.orchestrator import UpdateOrchestrator, update
from pgrefetch.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Entry points
    "Datastore",
    "UpdateOrchestrator",
    "load_models",
    "update",
    # Domain
    "DEFAULT_SCHEMA_NAME",
    "ModelDescriptor",
    "NativeQuery",
    "Statement",
    "find_primary_key",
    # Collaborators
    "CriteriaConverter",
    "PostgresCompiler",
    "QueryExecutor",
    "SchemaNormalizer",
    "TransactionManager",
    # Errors
    "AdapterError",
    "BadConnectionError",
    "CommitError",
    "CompileError",
    "ConfigurationError",
    "ConversionError",
    "NoPrimaryKeyError",
    "QueryError",
    "TransactionError",
    # Logging
    "configure_logging",
    "get_logger",
]
