"""
Server entry point for Expense Tracker

Starts the FastAPI application under uvicorn. Host, port and storage
come from the environment (.env) unless overridden on the command line.

Usage:
    expense-tracker run
    expense-tracker run --port 8080 --reload
    expense-tracker check-config
"""

import os
from typing import Optional

import typer
import uvicorn

from expense_tracker.audit import configure_logging
from expense_tracker.config import get_settings, validate_all_settings

cli = typer.Typer(help="Run and inspect the Expense Tracker backend.")


@cli.command()
def run(
    host: Optional[str] = typer.Option(None, help="Host interface to bind."),
    port: Optional[int] = typer.Option(None, help="Port to listen on."),
    storage: Optional[str] = typer.Option(
        None, help="Storage backend override: 'sql' or 'memory'."
    ),
    reload: bool = typer.Option(False, help="Reload on code changes (development)."),
) -> None:
    """Start the HTTP API using uvicorn."""
    if storage:
        os.environ["STORAGE_BACKEND"] = storage
        get_settings.cache_clear()

    settings = get_settings()
    server = settings.server
    configure_logging(settings.app.log_level)

    effective_host = host or server.host
    effective_port = port or server.port
    typer.echo(f"Starting Expense Tracker on {effective_host}:{effective_port}")

    uvicorn.run(
        "expense_tracker.api.routes:create_application",
        host=effective_host,
        port=effective_port,
        factory=True,
        reload=reload,
    )


@cli.command("check-config")
def check_config() -> None:
    """Validate configuration and exit non-zero if anything is wrong."""
    results = validate_all_settings()
    failed = False
    for name in ("storage", "server", "app"):
        if results.get(name):
            typer.echo(f"{name}: ok")
        else:
            failed = True
            typer.echo(f"{name}: {results.get(f'{name}_error', 'invalid')}", err=True)
    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    cli()
