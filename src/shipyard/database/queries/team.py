"""Team and membership query functions for Shipyard.

Provides async functions for creating, reading, and deleting Team
records and for managing the TeamMember rows used in access checks.
"""

from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.database.models.team import Team, TeamMember, TeamRole
from shipyard.errors import ConflictError, NotFoundError, ReferentialViolationError

logger = structlog.get_logger(__name__)


async def create_team(
    session: AsyncSession,
    workspace_id: UUID,
    name: str,
    description: str | None = None,
) -> Team:
    """Create a new team.

    Args:
        session: Active async database session.
        workspace_id: Workspace the team belongs to.
        name: Team name, unique within the workspace.
        description: Optional description.

    Returns:
        The newly created Team instance.

    Raises:
        ConflictError: If the workspace already has a team with this name.
    """
    name = name.strip()
    stmt = select(Team).where(
        Team.workspace_id == workspace_id,
        func.lower(Team.name) == name.lower(),
    )
    existing = (await session.execute(stmt)).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("team", "name", name, existing.id)

    team = Team(workspace_id=workspace_id, name=name, description=description)
    try:
        async with session.begin_nested():
            session.add(team)
            await session.flush()
    except IntegrityError as e:
        winner = (await session.execute(stmt)).scalar_one_or_none()
        if winner is None:
            raise
        raise ConflictError("team", "name", name, winner.id) from e

    logger.info("team_created", team_id=str(team.id), name=name)
    return team


async def get_team(session: AsyncSession, team_id: UUID) -> Team | None:
    """Retrieve a team by ID.

    Args:
        session: Active async database session.
        team_id: UUID of the team.

    Returns:
        The Team instance if found, None otherwise.
    """
    result = await session.execute(select(Team).where(Team.id == team_id))
    return result.scalar_one_or_none()


async def list_teams_for_actor(session: AsyncSession, actor_id: str) -> list[Team]:
    """List the teams an actor is a member of, ordered by name.

    Args:
        session: Active async database session.
        actor_id: Actor identity.

    Returns:
        List of Team instances.
    """
    stmt = (
        select(Team)
        .join(TeamMember, TeamMember.team_id == Team.id)
        .where(TeamMember.actor_id == actor_id)
        .order_by(Team.name)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def delete_team(session: AsyncSession, team_id: UUID) -> None:
    """Delete a team and, through cascading keys, everything it owns.

    Args:
        session: Active async database session.
        team_id: UUID of the team to delete.

    Raises:
        NotFoundError: If the team does not exist.
        ReferentialViolationError: If a dependent row has no cascade path.
    """
    try:
        result = await session.execute(delete(Team).where(Team.id == team_id))
    except IntegrityError as exc:
        raise ReferentialViolationError("team", team_id, [str(exc.orig)]) from exc
    if result.rowcount == 0:
        raise NotFoundError("team", team_id)
    logger.info("team_deleted", team_id=str(team_id))


async def add_member(
    session: AsyncSession,
    team_id: UUID,
    actor_id: str,
    role: TeamRole = TeamRole.member,
) -> TeamMember:
    """Add an actor to a team.

    Args:
        session: Active async database session.
        team_id: UUID of the team.
        actor_id: Actor identity to add.
        role: Role within the team.

    Returns:
        The new TeamMember instance.

    Raises:
        ConflictError: If the actor is already a member.
    """
    existing = await get_membership(session, team_id, actor_id)
    if existing is not None:
        raise ConflictError("team_member", "actor_id", actor_id, existing.id)

    member = TeamMember(team_id=team_id, actor_id=actor_id, role=role)
    try:
        async with session.begin_nested():
            session.add(member)
            await session.flush()
    except IntegrityError as e:
        winner = await get_membership(session, team_id, actor_id)
        if winner is None:
            raise
        raise ConflictError("team_member", "actor_id", actor_id, winner.id) from e

    logger.info("team_member_added", team_id=str(team_id), actor_id=actor_id, role=role.value)
    return member


async def get_membership(
    session: AsyncSession,
    team_id: UUID,
    actor_id: str,
) -> TeamMember | None:
    """Look up an actor's membership in a team.

    Args:
        session: Active async database session.
        team_id: UUID of the team.
        actor_id: Actor identity.

    Returns:
        The TeamMember instance if the actor belongs to the team, None otherwise.
    """
    stmt = select(TeamMember).where(
        TeamMember.team_id == team_id,
        TeamMember.actor_id == actor_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_members(session: AsyncSession, team_id: UUID) -> list[TeamMember]:
    """List a team's members in join order."""
    stmt = (
        select(TeamMember)
        .where(TeamMember.team_id == team_id)
        .order_by(TeamMember.created_at)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def actor_in_workspace(session: AsyncSession, workspace_id: UUID, actor_id: str) -> bool:
    """Return True if the actor belongs to any team of the workspace."""
    stmt = (
        select(func.count(TeamMember.id))
        .join(Team, Team.id == TeamMember.team_id)
        .where(Team.workspace_id == workspace_id, TeamMember.actor_id == actor_id)
    )
    return (await session.execute(stmt)).scalar_one() > 0
