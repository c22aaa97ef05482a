"""Environment query functions for Shipyard.

Environment names are unique per team regardless of case. The conflict is
reported as a ConflictError carrying the id of the existing environment so
callers can fall back to reusing it, both when the pre-check finds the row
and when a concurrent insert wins the race and the unique index rejects
ours.
"""

from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy import Select, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.database.models.environment import Environment
from shipyard.errors import ConflictError, NotFoundError, ReferentialViolationError

logger = structlog.get_logger(__name__)


def _name_match(team_id: UUID, name: str) -> Select[tuple[Environment]]:
    return select(Environment).where(
        Environment.team_id == team_id,
        func.lower(Environment.name) == name.strip().lower(),
    )


async def find_environment_by_name(
    session: AsyncSession,
    team_id: UUID,
    name: str,
) -> Environment | None:
    """Find a team's environment by case-insensitive name.

    Args:
        session: Active async database session.
        team_id: UUID of the owning team.
        name: Environment name to match.

    Returns:
        The matching Environment, or None.
    """
    result = await session.execute(_name_match(team_id, name))
    return result.scalar_one_or_none()


async def create_environment(
    session: AsyncSession,
    team_id: UUID,
    name: str,
    color: str = "#64748b",
    sort_order: int | None = None,
    is_default: bool = False,
) -> Environment:
    """Create an environment within a team.

    Args:
        session: Active async database session.
        team_id: UUID of the owning team.
        name: Environment name.
        color: Display colour.
        sort_order: Pipeline position; defaults to after the last environment.
        is_default: Whether this is a seeded default environment.

    Returns:
        The newly created Environment instance.

    Raises:
        ConflictError: If the team already has an environment with this
            name (case-insensitive).
    """
    name = name.strip()
    existing = await find_environment_by_name(session, team_id, name)
    if existing is not None:
        raise ConflictError("environment", "name", name, existing.id)

    if sort_order is None:
        stmt = select(func.max(Environment.sort_order)).where(Environment.team_id == team_id)
        current_max = (await session.execute(stmt)).scalar_one_or_none()
        sort_order = (current_max or 0) + 1

    environment = Environment(
        team_id=team_id,
        name=name,
        color=color,
        sort_order=sort_order,
        is_default=is_default,
    )
    try:
        async with session.begin_nested():
            session.add(environment)
            await session.flush()
    except IntegrityError as e:
        # A concurrent request created the same name after our check.
        winner = (await session.execute(_name_match(team_id, name))).scalar_one_or_none()
        if winner is None:
            raise
        raise ConflictError("environment", "name", name, winner.id) from e

    logger.info(
        "environment_created",
        environment_id=str(environment.id),
        team_id=str(team_id),
        name=name,
        sort_order=sort_order,
    )
    return environment


async def get_environment(session: AsyncSession, environment_id: UUID) -> Environment | None:
    """Retrieve an environment by ID.

    Args:
        session: Active async database session.
        environment_id: UUID of the environment.

    Returns:
        The Environment instance if found, None otherwise.
    """
    result = await session.execute(select(Environment).where(Environment.id == environment_id))
    return result.scalar_one_or_none()


async def list_environments(session: AsyncSession, team_id: UUID) -> list[Environment]:
    """List a team's environments in pipeline order.

    Args:
        session: Active async database session.
        team_id: UUID of the owning team.

    Returns:
        List of Environment instances ordered by sort_order then name.
    """
    stmt = (
        select(Environment)
        .where(Environment.team_id == team_id)
        .order_by(Environment.sort_order, Environment.name)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def delete_environment(session: AsyncSession, environment_id: UUID) -> None:
    """Delete an environment; its stages in every release go with it.

    Args:
        session: Active async database session.
        environment_id: UUID of the environment.

    Raises:
        NotFoundError: If the environment does not exist.
        ReferentialViolationError: If a dependent row has no cascade path.
    """
    try:
        result = await session.execute(
            delete(Environment).where(Environment.id == environment_id)
        )
    except IntegrityError as exc:
        raise ReferentialViolationError(
            "environment", environment_id, [str(exc.orig)]
        ) from exc
    if result.rowcount == 0:
        raise NotFoundError("environment", environment_id)
    logger.info("environment_deleted", environment_id=str(environment_id))
