"""Team management CLI commands.

This module provides CLI commands for creating and listing teams.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional
from uuid import UUID, uuid4

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shipyard.access import ActorContext
from shipyard.database.queries.environment import list_environments
from shipyard.database.queries.team import list_teams_for_actor
from shipyard.errors import ShipyardError

app = typer.Typer(help="Team management commands")
console = Console()


@app.command()
def create(
    name: Annotated[str, typer.Argument(help="Team name")],
    actor: Annotated[str, typer.Option("--actor", "-a", help="Acting identity; becomes team admin")],
    workspace: Annotated[
        Optional[str],
        typer.Option("--workspace", "-w", help="Workspace UUID (default: a new workspace)"),
    ] = None,
    description: Annotated[
        Optional[str],
        typer.Option("--description", "-d", help="Team description"),
    ] = None,
) -> None:
    """Create a team with the configured default environments."""
    from shipyard.main import get_app_context

    ctx = get_app_context()

    try:
        workspace_id = UUID(workspace) if workspace else uuid4()
    except ValueError:
        console.print(f"[red]Invalid workspace UUID:[/red] {workspace}")
        raise typer.Exit(code=1)

    async def _create_team():
        async with ctx.session_factory() as session, session.begin():
            team = await ctx.services.provisioner.create_team(
                session,
                ActorContext(actor_id=actor),
                workspace_id=workspace_id,
                name=name,
                description=description,
            )
            environments = await list_environments(session, team.id)
        await ctx.engine.dispose()
        return team, environments

    try:
        team, environments = asyncio.run(_create_team())
    except ShipyardError as e:
        console.print(f"[red]Error creating team:[/red] {e}")
        raise typer.Exit(code=1)

    panel = Panel(
        f"[green]Team created successfully![/green]\n\n"
        f"[bold]ID:[/bold] {team.id}\n"
        f"[bold]Name:[/bold] {team.name}\n"
        f"[bold]Workspace:[/bold] {team.workspace_id}\n"
        f"[bold]Environments:[/bold] {', '.join(env.name for env in environments)}",
        title="Team Created",
        border_style="green",
    )
    console.print(panel)


@app.command(name="list")
def list_teams(
    actor: Annotated[str, typer.Option("--actor", "-a", help="Acting identity")],
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List the teams an actor belongs to."""
    from shipyard.main import get_app_context

    ctx = get_app_context()

    async def _list_teams():
        async with ctx.session_factory() as session:
            teams = await list_teams_for_actor(session, actor)
        await ctx.engine.dispose()
        return teams

    teams = asyncio.run(_list_teams())

    if format == "json":
        output = [
            {
                "id": str(t.id),
                "workspace_id": str(t.workspace_id),
                "name": t.name,
                "description": t.description,
                "created_at": t.created_at.isoformat(),
            }
            for t in teams
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not teams:
        console.print("[yellow]No teams found[/yellow]")
        return

    table = Table(title=f"Teams for {actor}")
    table.add_column("ID", style="cyan", no_wrap=True, overflow="fold")
    table.add_column("Name", style="bold")
    table.add_column("Workspace", style="dim")
    table.add_column("Description")

    for t in teams:
        table.add_row(str(t.id), t.name, str(t.workspace_id), t.description or "-")

    console.print(table)
