"""
CLI utility helpers - output formatting and database construction.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from relstore.cursor import Row
from relstore.database import Database, create_database
from relstore.errors import StoreError
from relstore.logging import configure_logging

console = Console()
err_console = Console(stderr=True)


# ── Database helper ──────────────────────────────────────────────────────


def open_database(backend: str | None = None, file_path: str | None = None) -> Database:
    """Connect a ``Database`` from ``RELSTORE_*`` settings plus CLI overrides."""
    overrides: dict[str, Any] = {}
    if backend:
        overrides["backend"] = backend
    if file_path:
        overrides["file_path"] = file_path
    db = create_database(connect=False, **overrides)
    configure_logging(level=db.settings.log_level, json_format=db.settings.log_json)
    return db.connect()


def coerce_param(value: str) -> Any:
    """Turn a command-line parameter into a bindable value.

    ``null`` becomes None, integer and decimal literals become numbers,
    anything else stays text.
    """
    if value.lower() == "null":
        return None
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            continue
    return value


# ── Output helpers ───────────────────────────────────────────────────────


def fail(error: StoreError, *, as_json: bool = False) -> None:
    """Print ``error`` and exit with code 1."""
    if as_json:
        console.print_json(json.dumps({"error": error.to_dict()}, default=str))
    else:
        err_console.print(f"[bold red]Error[/bold red] ({type(error).__name__}): {error.message}")
    raise typer.Exit(code=1)


def output_rows(columns: tuple[str, ...], rows: list[Row], *, as_json: bool = False, title: str = "") -> None:
    """Render query rows to the terminal."""
    if as_json:
        console.print_json(json.dumps([row.as_dict() for row in rows], default=str))
        return
    if not rows:
        console.print("[dim]No rows.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for column in columns:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*("NULL" if v is None else str(v) for v in row.as_tuple()))
    console.print(table)


def output_dict(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a dataclass or dict as key-value pairs."""
    if hasattr(data, "__dataclass_fields__"):
        data = asdict(data)
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
