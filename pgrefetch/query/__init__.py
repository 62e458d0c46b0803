"""
Statement conversion and compilation for pgrefetch.

`CriteriaConverter` turns criteria into declarative statements and
`PostgresCompiler` turns those into SQL for psycopg.
"""

from pgrefetch.query.compiler import PostgresCompiler, quote_identifier
from pgrefetch.query.converter import CriteriaConverter

__all__ = [
    "CriteriaConverter",
    "PostgresCompiler",
    "quote_identifier",
]
