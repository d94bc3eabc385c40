"""
CLI: ``dualdb`` — initialize, probe and inspect the configured database.

Settings come from ``DB_*`` environment variables; ``--client`` and
``--path`` override them for a single invocation.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from dualdb import __version__
from dualdb.errors import DualDBError
from dualdb.facade import Database, create_database
from dualdb.logging import configure_logging
from dualdb.settings import DatabaseSettings

T = TypeVar("T")

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="dualdb",
    help="dualdb — one data-access layer over SQLite and PostgreSQL.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"dualdb {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Library log level, logs go to stderr [default: DB_LOG_LEVEL or WARNING]"
    ),
) -> None:
    """dualdb CLI — manage the configured database."""
    overrides = {"log_level": log_level} if log_level is not None else {}
    level = _load_settings(**overrides).log_level
    configure_logging(level=level, json_format=False, stream=sys.stderr)


# ── Helpers ──────────────────────────────────────────────────────────────


def _load_settings(**overrides: Any) -> DatabaseSettings:
    try:
        return DatabaseSettings(**overrides)
    except ValidationError as e:
        err_console.print(f"[bold red]Invalid configuration[/bold red]: {e}")
        raise typer.Exit(code=1) from e


def _settings(client: str | None = None, path: str | None = None, schema: Path | None = None) -> DatabaseSettings:
    overrides: dict[str, Any] = {}
    if client is not None:
        overrides["client"] = client
    if path is not None:
        overrides["path"] = path
    if schema is not None:
        overrides["schema_path"] = schema
    return _load_settings(**overrides)


def _run(settings: DatabaseSettings, work: Callable[[Database], Awaitable[T]]) -> T:
    """Build a facade, run ``work`` on it, always close it."""

    async def runner() -> T:
        db = create_database(settings)
        try:
            return await work(db)
        finally:
            await db.close()

    try:
        return asyncio.run(runner())
    except DualDBError as e:
        err_console.print(f"[bold red]Error[/bold red] ({e.category.value}): {e.message}")
        raise typer.Exit(code=1) from e


def _output(data: dict[str, Any], *, as_json: bool, title: str) -> None:
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        if isinstance(v, dict):
            continue
        console.print(f"  [cyan]{k}[/cyan]: {v}")


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def init(
    schema: Path | None = typer.Option(None, "--schema", "-s", help="DDL script to apply"),
    client: str | None = typer.Option(None, "--client", "-c", help="Engine (sqlite3, pg, ...)"),
    path: str | None = typer.Option(None, "--path", "-p", help="SQLite database file"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Connect, apply the schema and run migrations."""

    async def work(db: Database) -> dict[str, Any]:
        report = await db.initialize()
        return {
            "engine": db.engine.value,
            "applied": report.applied,
            "skipped": report.skipped,
            "errors": report.errors,
        }

    data = _run(_settings(client, path, schema), work)
    _output(data, as_json=json_out, title="Database Init")


@app.command()
def health(
    client: str | None = typer.Option(None, "--client", "-c"),
    path: str | None = typer.Option(None, "--path", "-p"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Probe the database; exits 1 when unhealthy."""

    async def work(db: Database) -> dict[str, Any]:
        await db.initialize()
        report = await db.health_check()
        return report.model_dump()

    data = _run(_settings(client, path), work)
    _output(data, as_json=json_out, title="Database Health")
    if data["status"] != "healthy":
        raise typer.Exit(code=1)


@app.command()
def stats(
    tables: list[str] = typer.Argument(..., help="Tables to count"),
    client: str | None = typer.Option(None, "--client", "-c"),
    path: str | None = typer.Option(None, "--path", "-p"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show row counts and database size."""

    async def work(db: Database) -> dict[str, Any]:
        await db.initialize()
        return await db.stats(tables)

    data = _run(_settings(client, path), work)
    if json_out:
        _output(data, as_json=True, title="")
        return

    table = Table(title="Table Counts", show_lines=False, pad_edge=False)
    table.add_column("table")
    table.add_column("rows", justify="right")
    for name, count in data["tables"].items():
        table.add_row(name, str(count))
    console.print(table)
    console.print(f"  [cyan]database_size[/cyan]: {data['database_size']}")
