from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from pgrefetch.config import get_settings
from pgrefetch.datastore import Datastore, load_models
from pgrefetch.domain.models import ModelDescriptor, find_primary_key
from pgrefetch.errors import AdapterError
from pgrefetch.reporter import print_records
from pgrefetch.utils.logging import configure_logging

app = typer.Typer(help="Update PostgreSQL rows and print them as they are after the update.")


def _parse_json_object(raw: str, option: str) -> Dict[str, Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"not valid JSON: {exc}", param_hint=option) from exc
    if not isinstance(value, dict):
        raise typer.BadParameter("must be a JSON object", param_hint=option)
    return value


async def _run_update(
    models: Dict[str, ModelDescriptor],
    table: str,
    criteria: Dict[str, Any],
    values: Dict[str, Any],
    dsn: Optional[str],
) -> List[Dict[str, Any]]:
    async with Datastore.from_settings(models, dsn_override=dsn) as datastore:
        return await datastore.update(table, criteria, values)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"schema={settings.db_schema_name} isolation={settings.db_isolation_level} "
        f"pool=({settings.db_pool_min_size},{settings.db_pool_max_size}) "
        f"statement_timeout_ms={settings.db_statement_timeout_ms}"
    )


@app.command()
def update(
    table: str = typer.Option(..., "--table", "-t", help="Table to update."),
    where: str = typer.Option("{}", "--where", "-w", help="Criteria as a JSON object."),
    values: str = typer.Option(..., "--set", "-s", help="Column values as a JSON object."),
    models: Path = typer.Option(
        Path("models.json"),
        "--models",
        "-m",
        help="JSON file mapping table names to model descriptors.",
    ),
    dsn: Optional[str] = typer.Option(None, "--dsn", help="Override the DSN built from settings."),
    as_json: bool = typer.Option(False, "--json", help="Print records as JSON instead of a table."),
) -> None:
    """
    Update rows of TABLE matching --where and print the updated rows.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    criteria = _parse_json_object(where, "--where")
    new_values = _parse_json_object(values, "--set")

    try:
        registry = load_models(models)
        records = asyncio.run(_run_update(registry, table, criteria, new_values, dsn))
    except AdapterError as exc:
        typer.echo(f"{exc.kind}: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if as_json:
        typer.echo(json.dumps(records, indent=2, default=str))
        return
    print_records(records, table, find_primary_key(registry[table]))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
