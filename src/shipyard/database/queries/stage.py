"""Stage query functions for Shipyard.

Provides async functions for creating, reading, and deleting Stage
records. Status changes go through ``shipyard.lifecycle.state_machine``
rather than a generic update here.
"""

from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy import Select, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.database.models.environment import Environment
from shipyard.database.models.stage import Stage, StageStatus
from shipyard.errors import ConflictError, NotFoundError

logger = structlog.get_logger(__name__)


def _pair_match(release_id: UUID, environment_id: UUID) -> Select[tuple[Stage]]:
    return select(Stage).where(
        Stage.release_id == release_id,
        Stage.environment_id == environment_id,
    )


async def find_stage(
    session: AsyncSession,
    release_id: UUID,
    environment_id: UUID,
) -> Stage | None:
    """Find the stage pairing a release with an environment, if any."""
    result = await session.execute(_pair_match(release_id, environment_id))
    return result.scalar_one_or_none()


async def create_stage(
    session: AsyncSession,
    release_id: UUID,
    environment: Environment,
) -> Stage:
    """Create the stage for one environment of a release.

    Args:
        session: Active async database session.
        release_id: UUID of the release.
        environment: Environment the stage deploys to.

    Returns:
        The newly created Stage instance, status not_started.

    Raises:
        ConflictError: If the release already has a stage for this environment.
    """
    existing = await find_stage(session, release_id, environment.id)
    if existing is not None:
        raise ConflictError("stage", "environment_id", str(environment.id), existing.id)

    stage = Stage(
        release_id=release_id,
        environment_id=environment.id,
        environment=environment,
        status=StageStatus.not_started,
    )
    try:
        async with session.begin_nested():
            session.add(stage)
            await session.flush()
    except IntegrityError as e:
        # A concurrent request added this environment to the release first.
        winner = (
            await session.execute(_pair_match(release_id, environment.id))
        ).scalar_one_or_none()
        if winner is None:
            raise
        raise ConflictError("stage", "environment_id", str(environment.id), winner.id) from e

    logger.info(
        "stage_created",
        stage_id=str(stage.id),
        release_id=str(release_id),
        environment=environment.name,
    )
    return stage


async def get_stage(
    session: AsyncSession,
    stage_id: UUID,
    for_update: bool = False,
) -> Stage | None:
    """Retrieve a stage by ID with its environment loaded.

    Args:
        session: Active async database session.
        stage_id: UUID of the stage to retrieve.
        for_update: Lock the stage row until the transaction ends, and
            reload it if the session already holds a copy.

    Returns:
        The Stage instance if found, None otherwise.
    """
    stmt = select(Stage).where(Stage.id == stage_id)
    if for_update:
        stmt = stmt.with_for_update(of=Stage).execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.unique().scalar_one_or_none()


async def list_stages(session: AsyncSession, release_ids: list[UUID]) -> list[Stage]:
    """List the stages of the given releases in pipeline order.

    Args:
        session: Active async database session.
        release_ids: Releases whose stages to include.

    Returns:
        Stages ordered by environment sort order.
    """
    if not release_ids:
        return []
    stmt = (
        select(Stage)
        .join(Environment, Environment.id == Stage.environment_id)
        .where(Stage.release_id.in_(release_ids))
        .order_by(Stage.release_id, Environment.sort_order, Environment.name)
    )
    result = await session.execute(stmt)
    return list(result.unique().scalars().all())


async def delete_stage(session: AsyncSession, stage_id: UUID) -> None:
    """Delete a stage with its tasks, blockers and task diagram.

    Args:
        session: Active async database session.
        stage_id: UUID of the stage to delete.

    Raises:
        NotFoundError: If the stage does not exist.
    """
    result = await session.execute(delete(Stage).where(Stage.id == stage_id))
    if result.rowcount == 0:
        raise NotFoundError("stage", stage_id)
    logger.info("stage_deleted", stage_id=str(stage_id))
