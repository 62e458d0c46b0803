"""
Infrastructure package for pgrefetch.

Centralizes database connectivity concerns (DSN, pooling, transactions).
Keep this layer focused on I/O and resource management, decoupled from
statement building and the update workflow.
"""

from pgrefetch.infrastructure.db_factory import build_dsn, create_async_pool
from pgrefetch.infrastructure.transactions import TransactionManager

__all__ = [
    "TransactionManager",
    "build_dsn",
    "create_async_pool",
]
