"""Activity logger for Shipyard.

Every mutating operation appends one entry describing who did what to
which resource. Appends never reject on content; only storage errors
propagate. Reads are a recency feed bounded to the most recent entries,
not a paginated archive.

Example:
    >>> activity = ActivityLogger(feed_limit=100)
    >>> await activity.append(session, ctx, "stage.approved", scope, {"note": "ok"})
    >>> entries = await activity.query(session, ctx, release_id=release.id)
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.access import ActorContext, ResourceScope, load_release_for, load_stage_for
from shipyard.database.models.activity import ActivityLogEntry
from shipyard.database.queries.activity import create_activity_entry, list_activity
from shipyard.database.queries.team import actor_in_workspace
from shipyard.errors import FieldValidationError, ForbiddenError

logger = structlog.get_logger(__name__)


class ActivityLogger:
    """Append-only audit trail writer and recency feed reader.

    Attributes:
        feed_limit: Maximum number of entries returned by query().
    """

    def __init__(self, feed_limit: int = 100) -> None:
        self.feed_limit = feed_limit

    async def append(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        action: str,
        scope: ResourceScope,
        meta: dict[str, Any] | None = None,
    ) -> ActivityLogEntry:
        """Record one mutation.

        Args:
            session: Active async database session.
            ctx: Actor performing the mutation.
            action: Dotted event name, e.g. ``blocker.resolved``.
            scope: Resolved ancestry of the mutated resource.
            meta: Structured event payload.

        Returns:
            The appended entry.
        """
        entry = await create_activity_entry(
            session,
            actor=ctx.actor_id,
            action=action,
            meta=meta,
            workspace_id=scope.workspace_id,
            team_id=scope.team_id,
            release_id=scope.release_id,
            stage_id=scope.stage_id,
        )
        logger.info(
            "activity_appended",
            action=action,
            actor_id=ctx.actor_id,
            release_id=str(scope.release_id) if scope.release_id else None,
            stage_id=str(scope.stage_id) if scope.stage_id else None,
        )
        return entry

    async def query(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        workspace_id: UUID | None = None,
        release_id: UUID | None = None,
        stage_id: UUID | None = None,
    ) -> list[ActivityLogEntry]:
        """Return the most recent entries matching every given filter.

        Args:
            session: Active async database session.
            ctx: Caller identity; must have access to each filtered scope.
            workspace_id: Optional workspace filter.
            release_id: Optional release filter.
            stage_id: Optional stage filter.

        Returns:
            Up to ``feed_limit`` entries, most recent first.

        Raises:
            FieldValidationError: If no filter is given.
            NotFoundError: If a filtered release or stage does not exist.
            ForbiddenError: If the actor lacks access to a filtered scope.
        """
        if workspace_id is None and release_id is None and stage_id is None:
            raise FieldValidationError(
                {"filter": "one of workspace_id, release_id or stage_id is required"}
            )

        if release_id is not None:
            await load_release_for(session, ctx, release_id)
        if stage_id is not None:
            await load_stage_for(session, ctx, stage_id)
        if workspace_id is not None and not await actor_in_workspace(
            session, workspace_id, ctx.actor_id
        ):
            raise ForbiddenError(ctx.actor_id, workspace_id)

        return await list_activity(
            session,
            workspace_id=workspace_id,
            release_id=release_id,
            stage_id=stage_id,
            limit=self.feed_limit,
        )
