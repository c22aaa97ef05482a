"""Task REST API endpoints for Shipyard.

Tasks are created under their stage (``POST /stages/{id}/tasks``); this
module updates and deletes them. Completing a task never changes the
stage's status by itself.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import ActorContext, load_task_for
from shipyard.database.models.task import TaskStatus
from shipyard.services import Services
from shipyard.web.dependencies import get_actor_context, get_services, get_session_factory
from shipyard.web.routes.stages import TaskResponse


class TaskUpdate(BaseModel):
    """Request schema for updating a task; only supplied fields change."""

    title: str | None = Field(default=None, min_length=1, max_length=500)
    details: str | None = None
    owner: str | None = None
    required: bool | None = None
    status: TaskStatus | None = None
    evidence_url: str | None = None


def create_tasks_router() -> APIRouter:
    """Create the task router.

    Returns:
        Configured APIRouter.
    """
    router = APIRouter(prefix="/tasks", tags=["tasks"])

    @router.patch("/{task_id}", response_model=TaskResponse)
    async def update_task_endpoint(
        task_id: UUID,
        body: TaskUpdate,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> TaskResponse:
        updates = body.model_dump(exclude_unset=True)
        for field_name in ("title", "required", "status"):
            if field_name in updates and updates[field_name] is None:
                del updates[field_name]

        async with session_factory() as session, session.begin():
            task, scope = await load_task_for(session, ctx, task_id, lock=True)
            task = await services.lifecycle.update_task(session, ctx, scope, task, **updates)
        return TaskResponse.model_validate(task)

    @router.delete("/{task_id}", status_code=204)
    async def delete_task_endpoint(
        task_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> Response:
        async with session_factory() as session, session.begin():
            task, scope = await load_task_for(session, ctx, task_id, lock=True)
            await services.lifecycle.delete_task(session, ctx, scope, task)
        return Response(status_code=204)

    return router
