"""
Cast raw driver rows into records typed per a model schema.

Each declared column type maps to a pydantic ``TypeAdapter``; columns missing
from the schema are passed through untouched. A value that does not fit its
declared type raises ``pydantic.ValidationError``: that is a schema mistake,
not a runtime condition callers are expected to handle.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import TypeAdapter

from pgrefetch.domain.models import Record

TYPE_MAP: Dict[str, Any] = {
    "string": Optional[str],
    "number": Optional[Union[int, float]],
    "boolean": Optional[bool],
    "json": Any,
    "ref": Any,
}


@lru_cache(maxsize=128)
def _adapters(schema: Tuple[Tuple[str, str], ...]) -> Dict[str, TypeAdapter]:
    return {column: TypeAdapter(TYPE_MAP.get(kind, Any)) for column, kind in schema}


class SchemaNormalizer:
    """Default value normalizer."""

    def normalize(self, schema: Mapping[str, str], records: Sequence[Record]) -> List[Record]:
        adapters = _adapters(tuple(sorted(schema.items())))
        normalized: List[Record] = []
        for record in records:
            normalized.append(
                {
                    column: adapters[column].validate_python(value) if column in adapters else value
                    for column, value in record.items()
                }
            )
        return normalized


__all__ = ["SchemaNormalizer", "TYPE_MAP"]
