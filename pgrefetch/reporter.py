from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table


def _cell(value: Any) -> str:
    if value is None:
        return "[dim]null[/dim]"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def build_records_table(
    records: List[Dict[str, Any]], table_name: str, primary_key: Optional[str] = None
) -> Table:
    """
    Render updated records as a rich table, primary key column first.
    """
    columns: List[str] = []
    for record in records:
        for column in record:
            if column not in columns:
                columns.append(column)
    if primary_key in columns:
        columns.remove(primary_key)
        columns.insert(0, primary_key)

    table = Table(
        title=f"Updated {table_name}",
        box=box.ROUNDED,
        caption=f"{len(records)} record(s)",
    )
    for column in columns:
        style = "cyan" if column == primary_key else None
        table.add_column(column, style=style, no_wrap=column == primary_key)
    for record in records:
        table.add_row(*(_cell(record.get(column)) for column in columns))
    return table


def print_records(
    records: List[Dict[str, Any]],
    table_name: str,
    primary_key: Optional[str] = None,
    console: Optional[Console] = None,
) -> None:
    console = console or Console()

    if not records:
        console.print("[yellow]No records matched; nothing was updated.[/yellow]")
        return

    console.print(build_records_table(records, table_name, primary_key))


__all__ = ["build_records_table", "print_records"]
