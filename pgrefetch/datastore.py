"""
Datastore: the model registry plus the pool and transaction manager behind it.

Usage:
    models = load_models("models.json")
    async with Datastore.from_settings(models) as datastore:
        records = await datastore.update("users", {"id": 1}, {"name": "Bob"})
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from psycopg import OperationalError
from pydantic import ValidationError

from pgrefetch.config import Settings, get_settings
from pgrefetch.domain.models import ModelDescriptor, Record
from pgrefetch.errors import BadConnectionError, ConfigurationError
from pgrefetch.infrastructure.db_factory import create_async_pool
from pgrefetch.infrastructure.transactions import TransactionManager
from pgrefetch.orchestrator import UpdateOrchestrator
from pgrefetch.utils.logging import get_logger

log = get_logger(__name__)


def load_models(path: Path | str, default_schema_name: Optional[str] = None) -> Dict[str, ModelDescriptor]:
    """
    Load model descriptors from a JSON file mapping table name -> descriptor.

    Descriptors without a ``schema_name`` get `default_schema_name`
    (``settings.db_schema_name`` when not given).
    """
    schema_name = default_schema_name or get_settings().db_schema_name
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read models from {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} must contain a JSON object keyed by table name.")

    models: Dict[str, ModelDescriptor] = {}
    for table, definition in raw.items():
        if not isinstance(definition, dict):
            raise ConfigurationError(f"Model '{table}' must be a JSON object.")
        try:
            models[table] = ModelDescriptor(**{"schema_name": schema_name, **definition})
        except ValidationError as exc:
            raise ConfigurationError(f"Model '{table}' is invalid: {exc}") from exc
    return models


class Datastore:
    """Models plus the connection manager needed to update their tables."""

    def __init__(
        self,
        models: Mapping[str, ModelDescriptor],
        manager: TransactionManager,
        pool: Any = None,
        orchestrator: Optional[UpdateOrchestrator] = None,
    ) -> None:
        self.models = dict(models)
        self.manager = manager
        self._pool = pool
        self._orchestrator = orchestrator or UpdateOrchestrator(manager)

    @classmethod
    def from_settings(
        cls,
        models: Mapping[str, ModelDescriptor],
        settings: Optional[Settings] = None,
        dsn_override: Optional[str] = None,
    ) -> "Datastore":
        settings = settings or get_settings()
        pool = create_async_pool(settings, dsn_override=dsn_override)
        return cls(models, TransactionManager.from_settings(pool, settings), pool=pool)

    async def open(self) -> None:
        if self._pool is None:
            return
        try:
            await self._pool.open(wait=True)
        except OperationalError as exc:
            raise BadConnectionError(f"Could not open the connection pool: {exc}") from exc
        log.info("[DATASTORE OPEN]", extra={"models": sorted(self.models)})

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            log.info("[DATASTORE CLOSED]")

    async def __aenter__(self) -> "Datastore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def model(self, table: str) -> ModelDescriptor:
        try:
            return self.models[table]
        except KeyError:
            raise ConfigurationError(
                f"The datastore has no model for table '{table}'."
            ) from None

    async def update(
        self, table: str, criteria: Mapping[str, Any], values: Mapping[str, Any]
    ) -> List[Record]:
        return await self._orchestrator.update(table, self.model(table), criteria, values)


__all__ = ["Datastore", "load_models"]
