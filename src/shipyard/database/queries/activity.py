"""Activity log query functions for Shipyard.

The activity log is append-only: this module offers insertion and
recency queries, nothing that updates or deletes entries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.database.models.activity import ActivityLogEntry

logger = structlog.get_logger(__name__)


async def create_activity_entry(
    session: AsyncSession,
    actor: str,
    action: str,
    meta: dict[str, Any] | None = None,
    workspace_id: UUID | None = None,
    team_id: UUID | None = None,
    release_id: UUID | None = None,
    stage_id: UUID | None = None,
    at: datetime | None = None,
) -> ActivityLogEntry:
    """Append one activity entry.

    Args:
        session: Active async database session.
        actor: Actor who performed the mutation.
        action: Dotted event name.
        meta: Structured event payload.
        workspace_id: Workspace scope.
        team_id: Team scope.
        release_id: Release scope.
        stage_id: Stage scope.
        at: Event time; defaults to now.

    Returns:
        The new ActivityLogEntry instance.
    """
    entry = ActivityLogEntry(
        actor=actor,
        action=action,
        meta=meta or {},
        workspace_id=workspace_id,
        team_id=team_id,
        release_id=release_id,
        stage_id=stage_id,
    )
    if at is not None:
        entry.at = at
    session.add(entry)
    await session.flush()

    logger.debug("activity_recorded", action=action, entry_id=str(entry.id))
    return entry


async def list_activity(
    session: AsyncSession,
    workspace_id: UUID | None = None,
    release_id: UUID | None = None,
    stage_id: UUID | None = None,
    limit: int = 100,
) -> list[ActivityLogEntry]:
    """List the most recent activity entries matching every given filter.

    Args:
        session: Active async database session.
        workspace_id: Optional workspace filter.
        release_id: Optional release filter.
        stage_id: Optional stage filter.
        limit: Maximum number of entries.

    Returns:
        Entries ordered most recent first; entries sharing a timestamp
        come back in reverse insertion order.
    """
    stmt = select(ActivityLogEntry)
    if workspace_id is not None:
        stmt = stmt.where(ActivityLogEntry.workspace_id == workspace_id)
    if release_id is not None:
        stmt = stmt.where(ActivityLogEntry.release_id == release_id)
    if stage_id is not None:
        stmt = stmt.where(ActivityLogEntry.stage_id == stage_id)
    stmt = stmt.order_by(ActivityLogEntry.at.desc(), ActivityLogEntry.seq.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
