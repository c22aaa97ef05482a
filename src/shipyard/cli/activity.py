"""Activity feed CLI command."""

from __future__ import annotations

import asyncio
from typing import Annotated, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from shipyard.access import ActorContext
from shipyard.errors import ShipyardError

console = Console()


def activity(
    actor: Annotated[str, typer.Option("--actor", "-a", help="Acting identity")],
    release_id: Annotated[Optional[str], typer.Option("--release", "-r", help="Release UUID")] = None,
    stage_id: Annotated[Optional[str], typer.Option("--stage", "-s", help="Stage UUID")] = None,
    workspace_id: Annotated[
        Optional[str], typer.Option("--workspace", "-w", help="Workspace UUID")
    ] = None,
) -> None:
    """Show the most recent activity for a workspace, release or stage."""
    from shipyard.main import get_app_context

    ctx = get_app_context()

    try:
        filters = {
            "workspace_id": UUID(workspace_id) if workspace_id else None,
            "release_id": UUID(release_id) if release_id else None,
            "stage_id": UUID(stage_id) if stage_id else None,
        }
    except ValueError as e:
        console.print(f"[red]Invalid UUID:[/red] {e}")
        raise typer.Exit(code=1)

    async def _query():
        async with ctx.session_factory() as session:
            entries = await ctx.services.activity.query(
                session, ActorContext(actor_id=actor), **filters
            )
        await ctx.engine.dispose()
        return entries

    try:
        entries = asyncio.run(_query())
    except ShipyardError as e:
        console.print(f"[red]Error loading activity:[/red] {e}")
        raise typer.Exit(code=1)

    if not entries:
        console.print("[yellow]No activity found[/yellow]")
        return

    table = Table(title="Activity")
    table.add_column("At", style="dim", no_wrap=True)
    table.add_column("Actor", style="cyan")
    table.add_column("Action", style="bold")
    table.add_column("Details")

    for entry in entries:
        details = ", ".join(f"{k}={v}" for k, v in entry.meta.items() if not isinstance(v, (dict, list)))
        table.add_row(entry.at.strftime("%Y-%m-%d %H:%M:%S"), entry.actor, entry.action, details)

    console.print(table)
