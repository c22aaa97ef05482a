"""Main CLI entry point for Shipyard.

This module provides the main Typer application with sub-commands for
teams, releases and the activity feed, plus the API server.

Usage:
    shipyard serve --port 8000
    shipyard team create "Platform" --actor alice
    shipyard release create <team-id> "R1" --version 1.4.0 --actor alice
    shipyard release show <release-id> --actor alice
    shipyard activity --release <release-id> --actor alice
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from shipyard.cli import activity as activity_cli
from shipyard.cli import release as release_cli
from shipyard.cli import team as team_cli
from shipyard.config import ShipyardConfig, load_config
from shipyard.database.connection import get_engine, get_session_factory
from shipyard.database.models import Base
from shipyard.logging import setup_logging
from shipyard.services import build_services

app = typer.Typer(
    name="shipyard",
    help="Shipyard: release readiness across deployment environments",
    no_args_is_help=True,
)

app.add_typer(team_cli.app, name="team", help="Manage teams")
app.add_typer(release_cli.app, name="release", help="Manage releases")
app.command(name="activity")(activity_cli.activity)

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded Shipyard configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
        services: Domain services wired from the configuration
    """

    def __init__(self, config: ShipyardConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)
        self.services = build_services(config)


_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: ShipyardConfig) -> AppContext:
    """Initialize the global application context."""
    global _app_context
    _app_context = AppContext(config)
    return _app_context


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default from config)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default from config)"),
    ] = None,
) -> None:
    """Start the Shipyard API server."""
    import uvicorn

    from shipyard.web.app import create_app

    config = get_app_context().config
    host = host or config.web.host
    port = port or config.web.port

    console.print("[bold cyan]Starting Shipyard API Server[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {host}")
    console.print(f"[dim]Port:[/dim] {port}")
    console.print()

    uvicorn.run(create_app(config), host=host, port=port, log_level="info")


@app.command(name="init-db")
def init_db() -> None:
    """Create all tables directly, for SQLite and local development.

    Deployed databases are migrated with ``alembic upgrade head`` instead.
    """
    ctx = get_app_context()

    async def _create() -> None:
        async with ctx.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await ctx.engine.dispose()

    asyncio.run(_create())
    console.print("[green]Database schema created[/green]")


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and initialize application context.

    Args:
        config_path: Optional path to TOML configuration file
        verbose: Enable debug-level logging
    """
    try:
        config = load_config(config_path)
    except ValueError as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        config.logging.level = "DEBUG"
        config.logging.format = "console"
    setup_logging(config.logging)

    initialize_context(config)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
