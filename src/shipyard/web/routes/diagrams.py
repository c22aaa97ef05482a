"""Diagram layout REST API endpoints for Shipyard.

Each release has one stage canvas and each stage one task canvas. A save
replaces the whole document; the response echoes the stored document with
every node resolved as entity-backed or free.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import ActorContext
from shipyard.layout.schema import ResolvedNode
from shipyard.layout.store import LayoutOwner, StoredLayout
from shipyard.services import Services
from shipyard.web.dependencies import get_actor_context, get_services, get_session_factory


class LayoutResponse(BaseModel):
    """Response schema for a stored layout."""

    owner: LayoutOwner
    owner_id: UUID
    layout: dict[str, Any]
    nodes: list[ResolvedNode]
    saved: bool
    updated_at: datetime | None
    updated_by: str | None

    @classmethod
    def from_stored(cls, stored: StoredLayout) -> LayoutResponse:
        return cls(
            owner=stored.owner,
            owner_id=stored.owner_id,
            layout=stored.layout.to_document(),
            nodes=stored.nodes,
            saved=stored.saved,
            updated_at=stored.updated_at,
            updated_by=stored.updated_by,
        )


def create_diagrams_router() -> APIRouter:
    """Create the diagram router.

    Returns:
        Configured APIRouter.
    """
    router = APIRouter(tags=["diagrams"])

    async def _get(
        owner: LayoutOwner,
        owner_id: UUID,
        ctx: ActorContext,
        services: Services,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> LayoutResponse:
        async with session_factory() as session:
            stored = await services.layouts.get_layout(session, ctx, owner, owner_id)
        return LayoutResponse.from_stored(stored)

    async def _save(
        owner: LayoutOwner,
        owner_id: UUID,
        layout: dict[str, Any],
        ctx: ActorContext,
        services: Services,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> LayoutResponse:
        async with session_factory() as session, session.begin():
            stored = await services.layouts.save_layout(session, ctx, owner, owner_id, layout)
        return LayoutResponse.from_stored(stored)

    @router.get("/releases/{release_id}/diagram", response_model=LayoutResponse)
    async def get_release_diagram_endpoint(
        release_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> LayoutResponse:
        """Get the release's stage canvas; an empty layout if never saved."""
        return await _get(LayoutOwner.release, release_id, ctx, services, session_factory)

    @router.put("/releases/{release_id}/diagram", response_model=LayoutResponse)
    async def save_release_diagram_endpoint(
        release_id: UUID,
        layout: dict[str, Any] = Body(...),
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> LayoutResponse:
        """Replace the release's stage canvas."""
        return await _save(LayoutOwner.release, release_id, layout, ctx, services, session_factory)

    @router.get("/stages/{stage_id}/task-diagram", response_model=LayoutResponse)
    async def get_task_diagram_endpoint(
        stage_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> LayoutResponse:
        """Get the stage's task canvas; an empty layout if never saved."""
        return await _get(LayoutOwner.stage, stage_id, ctx, services, session_factory)

    @router.post("/stages/{stage_id}/task-diagram", response_model=LayoutResponse)
    async def save_task_diagram_endpoint(
        stage_id: UUID,
        layout: dict[str, Any] = Body(...),
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> LayoutResponse:
        """Replace the stage's task canvas."""
        return await _save(LayoutOwner.stage, stage_id, layout, ctx, services, session_factory)

    return router
