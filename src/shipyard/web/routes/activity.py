"""Activity feed REST API endpoint for Shipyard."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import ActorContext
from shipyard.services import Services
from shipyard.web.dependencies import get_actor_context, get_services, get_session_factory


class ActivityResponse(BaseModel):
    """Response schema for one activity log entry."""

    id: UUID
    workspace_id: UUID | None
    team_id: UUID | None
    release_id: UUID | None
    stage_id: UUID | None
    actor: str
    action: str
    meta: dict[str, Any]
    at: datetime

    model_config = {"from_attributes": True}


def create_activity_router() -> APIRouter:
    """Create the activity feed router.

    Returns:
        Configured APIRouter.
    """
    router = APIRouter(prefix="/activity", tags=["activity"])

    @router.get("/", response_model=list[ActivityResponse])
    async def list_activity_endpoint(
        workspace_id: UUID | None = None,
        release_id: UUID | None = None,
        stage_id: UUID | None = None,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> list[ActivityResponse]:
        """List recent activity, newest first.

        At least one of workspace_id, release_id or stage_id is required;
        given filters are combined.
        """
        async with session_factory() as session:
            entries = await services.activity.query(
                session,
                ctx,
                workspace_id=workspace_id,
                release_id=release_id,
                stage_id=stage_id,
            )
        return [ActivityResponse.model_validate(entry) for entry in entries]

    return router
