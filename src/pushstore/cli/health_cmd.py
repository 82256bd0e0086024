"""CLI command for checking storage health.

Usage:
    pushstore health
    pushstore health --timeout 5 --format json
"""

from __future__ import annotations

import asyncio

import typer

from pushstore.config import Settings
from pushstore.factory import create_storage
from pushstore.observability.logging import configure_logging

app = typer.Typer(help="Check the configured storage backends")


async def _collect(timeout: float) -> dict[str, bool]:
    storage = create_storage(Settings())
    try:
        results = {
            f"metadata ({storage.backend.backend_type})": await storage.backend.ping(),
            f"blobs ({storage.blobs.storage_type})": await storage.blobs.ping(),
        }
        if storage.cache is not None:
            results["cache (redis)"] = await storage.cache.health_check()
        results["overall"] = await storage.check_health(timeout=timeout)
        return results
    finally:
        await storage.close()


@app.callback(invoke_without_command=True)
def health(
    timeout: float = typer.Option(
        10.0,
        "--timeout",
        "-t",
        help="Seconds to wait for all backends",
    ),
    output_format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: text, json",
    ),
) -> None:
    """Ping every configured backend and exit non-zero if any is down."""
    import json

    from rich.console import Console
    from rich.table import Table

    settings = Settings()
    configure_logging(json_format=settings.log_json, level=settings.log_level)
    console = Console()

    results = asyncio.run(_collect(timeout))

    if output_format == "json":
        console.print(json.dumps(results, indent=2))
    else:
        table = Table(title="pushstore health")
        table.add_column("Component")
        table.add_column("Status")
        for component, ok in results.items():
            table.add_row(component, "[green]ok[/green]" if ok else "[red]down[/red]")
        console.print(table)

    if not results["overall"]:
        raise typer.Exit(code=1)
