"""CLI commands for pushstore.

Provides command-line interface using Typer:
- pushstore health: Check the configured storage backends
- pushstore init-db: Create the SQL schema

Usage:
    pushstore --help
    pushstore health --timeout 5
    pushstore init-db
"""

import typer

from pushstore.cli.health_cmd import app as health_app
from pushstore.cli.init_db_cmd import app as init_db_app

# Main CLI application
app = typer.Typer(
    name="pushstore",
    help="pushstore: storage engine for over-the-air release distribution",
    no_args_is_help=True,
)

app.add_typer(health_app, name="health")
app.add_typer(init_db_app, name="init-db")


@app.callback()
def callback() -> None:
    """pushstore: storage engine for over-the-air release distribution."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
