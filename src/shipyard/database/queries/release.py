"""Release CRUD query functions for Shipyard.

Provides async functions for creating, reading, updating, and deleting
Release records using SQLAlchemy 2.0 select() API.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.database.models.release import Release
from shipyard.errors import NotFoundError

logger = structlog.get_logger(__name__)


async def create_release(
    session: AsyncSession,
    team_id: UUID,
    name: str,
    created_by: str,
    version: str | None = None,
    change_window: dict[str, Any] | None = None,
) -> Release:
    """Create a new release.

    Stage creation is not done here; see
    ``StageLifecycleEngine.create_default_stages``.

    Args:
        session: Active async database session.
        team_id: UUID of the owning team.
        name: Release name.
        created_by: Actor id of the creator.
        version: Optional version string.
        change_window: Optional change window document.

    Returns:
        The newly created Release instance.
    """
    release = Release(
        team_id=team_id,
        name=name,
        version=version,
        change_window=change_window,
        created_by=created_by,
    )
    session.add(release)
    await session.flush()

    logger.info(
        "release_created",
        release_id=str(release.id),
        team_id=str(team_id),
        name=name,
        version=version,
    )
    return release


async def get_release(session: AsyncSession, release_id: UUID) -> Release | None:
    """Retrieve a release by ID.

    Args:
        session: Active async database session.
        release_id: UUID of the release to retrieve.

    Returns:
        The Release instance if found, None otherwise.
    """
    result = await session.execute(select(Release).where(Release.id == release_id))
    return result.scalar_one_or_none()


async def list_releases(
    session: AsyncSession,
    team_ids: list[UUID],
) -> list[Release]:
    """List releases of the given teams, newest first.

    Args:
        session: Active async database session.
        team_ids: Teams whose releases to include.

    Returns:
        List of matching Release instances.
    """
    if not team_ids:
        return []
    stmt = (
        select(Release)
        .where(Release.team_id.in_(team_ids))
        .order_by(Release.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_release(
    session: AsyncSession,
    release_id: UUID,
    **updates: Any,
) -> Release:
    """Update a release's fields.

    Args:
        session: Active async database session.
        release_id: UUID of the release to update.
        **updates: Field names and values to update.

    Returns:
        The updated Release instance.

    Raises:
        NotFoundError: If the release does not exist.
    """
    release = await get_release(session, release_id)
    if release is None:
        raise NotFoundError("release", release_id)

    for field_name, value in updates.items():
        setattr(release, field_name, value)
    await session.flush()

    logger.info(
        "release_updated",
        release_id=str(release_id),
        fields_updated=list(updates.keys()),
    )
    return release


async def delete_release(session: AsyncSession, release_id: UUID) -> None:
    """Delete a release together with its stages, tasks, blockers and diagram.

    Args:
        session: Active async database session.
        release_id: UUID of the release to delete.

    Raises:
        NotFoundError: If the release does not exist.
    """
    result = await session.execute(delete(Release).where(Release.id == release_id))
    if result.rowcount == 0:
        raise NotFoundError("release", release_id)
    logger.info("release_deleted", release_id=str(release_id))
