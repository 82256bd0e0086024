"""CLI command for creating the SQL schema.

Usage:
    pushstore init-db
    pushstore init-db --database-url sqlite+aiosqlite:///pushstore.db
"""

from __future__ import annotations

import asyncio

import typer

from pushstore.errors import StorageError
from pushstore.persistence.sql import SqlMetadataBackend

app = typer.Typer(help="Create the SQL schema")


async def _init(database_url: str) -> None:
    backend = SqlMetadataBackend.from_url(database_url)
    try:
        await backend.initialize()
    finally:
        await backend.close()


@app.callback(invoke_without_command=True)
def init_db(
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        "-d",
        help="Database URL (defaults to PUSHSTORE_DATABASE_URL)",
    ),
) -> None:
    """Create all tables that do not exist yet."""
    from rich.console import Console

    from pushstore.config import Settings

    console = Console()
    url = database_url or Settings().database_url

    try:
        asyncio.run(_init(url))
    except StorageError as exc:
        console.print(f"[red]Failed to initialize database:[/red] {exc.message}")
        raise typer.Exit(code=1) from exc

    console.print("[green]Database schema is up to date[/green]")
