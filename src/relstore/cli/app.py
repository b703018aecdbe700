"""
Root Typer application for the relstore CLI.

Connection settings come from ``RELSTORE_*`` environment variables (or a
``.env`` file); ``--backend`` and ``--file`` override them per command.
"""

from __future__ import annotations

from dataclasses import asdict

import typer
from typer import Typer

from relstore.cli.utils import coerce_param, fail, open_database, output_dict, output_rows
from relstore.errors import StoreError

app = Typer(
    name="relstore",
    help="relstore - shared relational storage for plugin suites.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("relstore")
        except PackageNotFoundError:
            v = "unknown"
        typer.echo(f"relstore {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """relstore CLI - check backends and run ad-hoc statements."""


@app.command()
def ping(
    backend: str | None = typer.Option(None, "--backend", "-b", help="Backend kind or alias"),
    file_path: str | None = typer.Option(None, "--file", "-f", help="Database file (embedded file backend)"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Connect, run SELECT 1, and show pool stats."""
    try:
        with open_database(backend, file_path) as db:
            db.query("SELECT 1", lambda cursor: cursor.scalar())
            stats = db.stats()
            url = db.settings.url()
    except StoreError as e:
        fail(e, as_json=json_out)
        return
    output_dict({"url": url, **asdict(stats)}, as_json=json_out, title="Ping OK")


@app.command()
def query(
    sql: str = typer.Argument(..., help="SQL with ? placeholders"),
    params: list[str] | None = typer.Argument(None, help="Positional parameters"),
    backend: str | None = typer.Option(None, "--backend", "-b"),
    file_path: str | None = typer.Option(None, "--file", "-f"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a query and print its rows."""
    values = [coerce_param(p) for p in params or []]
    try:
        with open_database(backend, file_path) as db:
            with db.execute_query(sql, *values) as cursor:
                columns = cursor.columns
                rows = cursor.fetchall()
    except StoreError as e:
        fail(e, as_json=json_out)
        return
    output_rows(columns, rows, as_json=json_out, title=sql)


@app.command(name="exec")
def exec_(
    sql: str = typer.Argument(..., help="SQL with ? placeholders"),
    params: list[str] | None = typer.Argument(None, help="Positional parameters"),
    backend: str | None = typer.Option(None, "--backend", "-b"),
    file_path: str | None = typer.Option(None, "--file", "-f"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a data-changing statement and print the affected row count."""
    values = [coerce_param(p) for p in params or []]
    try:
        with open_database(backend, file_path) as db:
            affected = db.execute_update(sql, *values)
    except StoreError as e:
        fail(e, as_json=json_out)
        return
    output_dict({"affected_rows": affected}, as_json=json_out)
