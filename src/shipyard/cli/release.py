"""Release management CLI commands.

This module provides CLI commands for creating, listing and inspecting
releases. Status and progress are derived at read time, exactly as the API
derives them.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shipyard.access import ActorContext, load_release_for, load_team_for
from shipyard.database.queries.blocker import list_blockers
from shipyard.database.queries.stage import list_stages
from shipyard.database.queries.task import list_tasks
from shipyard.errors import ShipyardError
from shipyard.lifecycle.aggregator import OutcomeFilter

app = typer.Typer(help="Release management commands")
console = Console()

STATUS_COLORS = {
    "not_started": "dim",
    "in_progress": "blue",
    "blocked": "red",
    "done": "green",
}


def _status(value: str) -> str:
    color = STATUS_COLORS.get(value, "white")
    return f"[{color}]{value}[/{color}]"


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[red]Invalid {label} UUID:[/red] {value}")
        raise typer.Exit(code=1)


@app.command()
def create(
    team_id: Annotated[str, typer.Argument(help="Team UUID")],
    name: Annotated[str, typer.Argument(help="Release name")],
    actor: Annotated[str, typer.Option("--actor", "-a", help="Acting identity")],
    version: Annotated[
        Optional[str],
        typer.Option("--version", "-V", help="Release version"),
    ] = None,
) -> None:
    """Create a release with one stage per team environment."""
    from shipyard.main import get_app_context

    ctx = get_app_context()
    team_uuid = _parse_uuid(team_id, "team")
    actor_ctx = ActorContext(actor_id=actor)

    async def _create_release():
        async with ctx.session_factory() as session, session.begin():
            scope = await load_team_for(session, actor_ctx, team_uuid)
            result = await ctx.services.provisioner.create_release(
                session, actor_ctx, scope, name=name, version=version
            )
        await ctx.engine.dispose()
        return result

    try:
        release, stages = asyncio.run(_create_release())
    except ShipyardError as e:
        console.print(f"[red]Error creating release:[/red] {e}")
        raise typer.Exit(code=1)

    panel = Panel(
        f"[green]Release created successfully![/green]\n\n"
        f"[bold]ID:[/bold] {release.id}\n"
        f"[bold]Name:[/bold] {release.name}\n"
        f"[bold]Version:[/bold] {release.version or '-'}\n"
        f"[bold]Stages:[/bold] {' -> '.join(stage.environment_name for stage in stages)}",
        title="Release Created",
        border_style="green",
    )
    console.print(panel)


@app.command(name="list")
def list_releases(
    actor: Annotated[str, typer.Option("--actor", "-a", help="Acting identity")],
    team_id: Annotated[Optional[str], typer.Option("--team", "-t", help="Team UUID")] = None,
    outcome: Annotated[
        OutcomeFilter,
        typer.Option("--outcome", "-o", help="Filter by outcome"),
    ] = OutcomeFilter.all,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List releases with derived status and progress."""
    from shipyard.main import get_app_context

    ctx = get_app_context()
    team_uuid = _parse_uuid(team_id, "team") if team_id else None

    async def _list_summaries():
        async with ctx.session_factory() as session:
            summaries = await ctx.services.aggregator.list_summaries(
                session, ActorContext(actor_id=actor), team_id=team_uuid, outcome=outcome
            )
        await ctx.engine.dispose()
        return summaries

    try:
        summaries = asyncio.run(_list_summaries())
    except ShipyardError as e:
        console.print(f"[red]Error listing releases:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        output = [
            {
                "id": str(s.release.id),
                "team_id": str(s.release.team_id),
                "name": s.release.name,
                "version": s.release.version,
                "status": s.status.value,
                "progress": s.progress,
                "outcome": s.outcome.value,
                "stage_count": s.stage_count,
                "task_count": s.task_count,
                "active_blocker_count": s.active_blocker_count,
            }
            for s in summaries
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not summaries:
        console.print("[yellow]No releases found[/yellow]")
        return

    table = Table(title="Releases")
    table.add_column("ID", style="cyan", no_wrap=True, overflow="fold")
    table.add_column("Name", style="bold")
    table.add_column("Version", style="dim")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Stages", justify="right", style="dim")
    table.add_column("Blockers", justify="right")

    for s in summaries:
        blockers = str(s.active_blocker_count)
        if s.active_blocker_count:
            blockers = f"[red]{blockers}[/red]"
        table.add_row(
            str(s.release.id)[:8] + "...",
            s.release.name,
            s.release.version or "-",
            _status(s.status.value),
            f"{s.progress}%",
            str(s.stage_count),
            blockers,
        )

    console.print(table)


@app.command()
def show(
    release_id: Annotated[str, typer.Argument(help="Release UUID")],
    actor: Annotated[str, typer.Option("--actor", "-a", help="Acting identity")],
) -> None:
    """Show a release's stages with their tasks and blockers."""
    from shipyard.main import get_app_context

    ctx = get_app_context()
    release_uuid = _parse_uuid(release_id, "release")
    actor_ctx = ActorContext(actor_id=actor)

    async def _load():
        async with ctx.session_factory() as session:
            scope = await load_release_for(session, actor_ctx, release_uuid)
            summary = (await ctx.services.aggregator.summarize(session, [scope.release]))[0]
            stages = await list_stages(session, [release_uuid])
            stage_ids = [stage.id for stage in stages]
            tasks = await list_tasks(session, stage_ids)
            blockers = await list_blockers(session, stage_ids, active_only=True)
        await ctx.engine.dispose()
        return summary, stages, tasks, blockers

    try:
        summary, stages, tasks, blockers = asyncio.run(_load())
    except ShipyardError as e:
        console.print(f"[red]Error loading release:[/red] {e}")
        raise typer.Exit(code=1)

    release = summary.release
    console.print(
        Panel(
            f"[bold]ID:[/bold] {release.id}\n"
            f"[bold]Version:[/bold] {release.version or '-'}\n"
            f"[bold]Status:[/bold] {_status(summary.status.value)}\n"
            f"[bold]Progress:[/bold] {summary.progress}% "
            f"({summary.done_task_count}/{summary.task_count} tasks)",
            title=release.name,
            border_style="cyan",
        )
    )

    table = Table(title="Stages")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Environment", style="bold")
    table.add_column("Status")
    table.add_column("Tasks", justify="right")
    table.add_column("Active blockers")
    table.add_column("Approver", style="dim")

    for stage in stages:
        stage_tasks = [t for t in tasks if t.stage_id == stage.id]
        done = sum(1 for t in stage_tasks if t.status.value == "done")
        stage_blockers = [b for b in blockers if b.stage_id == stage.id]
        table.add_row(
            str(stage.environment_order),
            stage.environment_name,
            _status(stage.status.value),
            f"{done}/{len(stage_tasks)}",
            ", ".join(f"{b.severity.value} {b.reason}" for b in stage_blockers) or "-",
            stage.approver or "-",
        )

    console.print(table)
