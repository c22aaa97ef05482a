"""Blocker REST API endpoints for Shipyard.

Blockers are opened under their stage (``POST /stages/{id}/blockers``).
Patching ``active`` to false resolves a blocker; when the last active
blocker of a blocked stage is resolved the stage returns to in_progress.
Deleting an active blocker resolves it first.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import ActorContext, load_blocker_for
from shipyard.database.models.blocker import BlockerSeverity
from shipyard.services import Services
from shipyard.web.dependencies import get_actor_context, get_services, get_session_factory
from shipyard.web.routes.stages import BlockerResponse
from shipyard.web.webhooks import WebhookEvent


class BlockerUpdate(BaseModel):
    """Request schema for updating a blocker; only supplied fields change."""

    reason: str | None = Field(default=None, min_length=1)
    severity: BlockerSeverity | None = None
    owner: str | None = None
    eta: datetime | None = None
    active: bool | None = None


def create_blockers_router() -> APIRouter:
    """Create the blocker router.

    Returns:
        Configured APIRouter.
    """
    router = APIRouter(prefix="/blockers", tags=["blockers"])

    @router.patch("/{blocker_id}", response_model=BlockerResponse)
    async def update_blocker_endpoint(
        blocker_id: UUID,
        body: BlockerUpdate,
        background_tasks: BackgroundTasks,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> BlockerResponse:
        updates = body.model_dump(exclude_unset=True)
        for field_name in ("reason", "severity", "active"):
            if field_name in updates and updates[field_name] is None:
                del updates[field_name]

        async with session_factory() as session, session.begin():
            blocker, scope = await load_blocker_for(session, ctx, blocker_id, lock=True)
            was_active = blocker.active
            blocker = await services.lifecycle.update_blocker(session, ctx, scope, blocker, **updates)

        if was_active and not blocker.active:
            background_tasks.add_task(
                services.webhooks.publish,
                WebhookEvent.BLOCKER_RESOLVED,
                {
                    "blocker_id": str(blocker.id),
                    "stage_id": str(blocker.stage_id),
                    "stage_status": scope.stage.status.value,
                },
            )
        return BlockerResponse.model_validate(blocker)

    @router.delete("/{blocker_id}", status_code=204)
    async def delete_blocker_endpoint(
        blocker_id: UUID,
        background_tasks: BackgroundTasks,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> Response:
        """Delete a blocker. An active blocker is resolved first."""
        async with session_factory() as session, session.begin():
            blocker, scope = await load_blocker_for(session, ctx, blocker_id, lock=True)
            was_active = blocker.active
            stage_id = blocker.stage_id
            await services.lifecycle.delete_blocker(session, ctx, scope, blocker)

        if was_active:
            background_tasks.add_task(
                services.webhooks.publish,
                WebhookEvent.BLOCKER_RESOLVED,
                {
                    "blocker_id": str(blocker_id),
                    "stage_id": str(stage_id),
                    "stage_status": scope.stage.status.value,
                },
            )
        return Response(status_code=204)

    return router
