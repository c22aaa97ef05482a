"""Blocker query functions for Shipyard.

Provides async functions for blockers and the active-blocker count the
lifecycle engine uses to decide whether a stage may leave ``blocked``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.database.models.blocker import Blocker, BlockerSeverity
from shipyard.errors import NotFoundError

logger = structlog.get_logger(__name__)


async def create_blocker(
    session: AsyncSession,
    stage_id: UUID,
    reason: str,
    severity: BlockerSeverity = BlockerSeverity.P2,
    owner: str | None = None,
    eta: datetime | None = None,
) -> Blocker:
    """Create an active blocker on a stage.

    Args:
        session: Active async database session.
        stage_id: UUID of the blocked stage.
        reason: Description of the impediment.
        severity: Severity ranking.
        owner: Free-text owner.
        eta: Optional expected resolution time.

    Returns:
        The newly created Blocker instance.
    """
    blocker = Blocker(
        stage_id=stage_id,
        reason=reason,
        severity=severity,
        owner=owner,
        eta=eta,
        active=True,
    )
    session.add(blocker)
    await session.flush()

    logger.info(
        "blocker_created",
        blocker_id=str(blocker.id),
        stage_id=str(stage_id),
        severity=severity.value,
    )
    return blocker


async def get_blocker(session: AsyncSession, blocker_id: UUID) -> Blocker | None:
    """Retrieve a blocker by ID.

    Args:
        session: Active async database session.
        blocker_id: UUID of the blocker to retrieve.

    Returns:
        The Blocker instance if found, None otherwise.
    """
    result = await session.execute(select(Blocker).where(Blocker.id == blocker_id))
    return result.scalar_one_or_none()


async def list_blockers(
    session: AsyncSession,
    stage_ids: list[UUID],
    active_only: bool = False,
) -> list[Blocker]:
    """List the blockers of the given stages, most severe first.

    Args:
        session: Active async database session.
        stage_ids: Stages whose blockers to include.
        active_only: Only return active blockers.

    Returns:
        List of Blocker instances.
    """
    if not stage_ids:
        return []
    stmt = select(Blocker).where(Blocker.stage_id.in_(stage_ids))
    if active_only:
        stmt = stmt.where(Blocker.active.is_(True))
    stmt = stmt.order_by(Blocker.severity, Blocker.created_at)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_active_blockers(
    session: AsyncSession,
    stage_id: UUID,
    exclude_id: UUID | None = None,
) -> int:
    """Count active blockers on a stage.

    Args:
        session: Active async database session.
        stage_id: UUID of the stage.
        exclude_id: Blocker to leave out of the count.

    Returns:
        Number of active blockers.
    """
    stmt = select(func.count(Blocker.id)).where(
        Blocker.stage_id == stage_id,
        Blocker.active.is_(True),
    )
    if exclude_id is not None:
        stmt = stmt.where(Blocker.id != exclude_id)
    return (await session.execute(stmt)).scalar_one()


async def update_blocker(
    session: AsyncSession,
    blocker_id: UUID,
    **updates: Any,
) -> Blocker:
    """Update a blocker's fields.

    Args:
        session: Active async database session.
        blocker_id: UUID of the blocker to update.
        **updates: Field names and values to update.

    Returns:
        The updated Blocker instance.

    Raises:
        NotFoundError: If the blocker does not exist.
    """
    blocker = await get_blocker(session, blocker_id)
    if blocker is None:
        raise NotFoundError("blocker", blocker_id)

    for field_name, value in updates.items():
        setattr(blocker, field_name, value)
    await session.flush()

    logger.info(
        "blocker_updated",
        blocker_id=str(blocker_id),
        fields_updated=list(updates.keys()),
    )
    return blocker


async def delete_blocker(session: AsyncSession, blocker_id: UUID) -> None:
    """Delete a blocker.

    Args:
        session: Active async database session.
        blocker_id: UUID of the blocker to delete.

    Raises:
        NotFoundError: If the blocker does not exist.
    """
    result = await session.execute(delete(Blocker).where(Blocker.id == blocker_id))
    if result.rowcount == 0:
        raise NotFoundError("blocker", blocker_id)
    logger.info("blocker_deleted", blocker_id=str(blocker_id))
