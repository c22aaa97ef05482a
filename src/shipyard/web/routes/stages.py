"""Stage REST API endpoints for Shipyard.

Stages are created with their release (or added through
``POST /releases/{id}/stages``). This module covers reading a stage, direct
status updates, the approval gate, and the stage's tasks and blockers.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import ActorContext, load_stage_for
from shipyard.database.models.blocker import Blocker, BlockerSeverity
from shipyard.database.models.stage import Stage, StageStatus
from shipyard.database.models.task import Task, TaskStatus
from shipyard.database.queries.blocker import list_blockers
from shipyard.database.queries.task import list_tasks
from shipyard.services import Services
from shipyard.web.dependencies import get_actor_context, get_services, get_session_factory
from shipyard.web.webhooks import WebhookEvent

logger = structlog.get_logger(__name__)


# --- Pydantic Schemas ---


class TaskResponse(BaseModel):
    """Response schema for task data."""

    id: UUID
    stage_id: UUID
    title: str
    details: str | None
    owner: str | None
    required: bool
    status: TaskStatus
    evidence_url: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BlockerResponse(BaseModel):
    """Response schema for blocker data."""

    id: UUID
    stage_id: UUID
    severity: BlockerSeverity
    reason: str
    owner: str | None
    eta: datetime | None
    active: bool
    resolved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class StageResponse(BaseModel):
    """Response schema for stage data, with its environment's display fields."""

    id: UUID
    release_id: UUID
    environment_id: UUID
    environment_name: str
    environment_color: str
    environment_order: int
    status: StageStatus
    approver: str | None
    approval_note: str | None
    started_at: datetime | None
    ended_at: datetime | None
    last_update: datetime

    model_config = {"from_attributes": True}


class StageDetailResponse(StageResponse):
    """A stage with its tasks and blockers."""

    tasks: list[TaskResponse] = Field(default_factory=list)
    blockers: list[BlockerResponse] = Field(default_factory=list)


class StageUpdate(BaseModel):
    """Request schema for a direct stage status update."""

    status: StageStatus


class StageApprove(BaseModel):
    """Request schema for approving a stage."""

    note: str | None = None


class TaskCreate(BaseModel):
    """Request schema for creating a task."""

    title: str = Field(..., min_length=1, max_length=500)
    details: str | None = None
    owner: str | None = None
    required: bool = True
    status: TaskStatus = TaskStatus.todo
    evidence_url: str | None = None


class BlockerCreate(BaseModel):
    """Request schema for opening a blocker."""

    reason: str = Field(..., min_length=1)
    severity: BlockerSeverity = BlockerSeverity.P2
    owner: str | None = None
    eta: datetime | None = None


def build_stage_detail(
    stage: Stage,
    tasks: list[Task],
    blockers: list[Blocker],
) -> StageDetailResponse:
    """Assemble a StageDetailResponse from a stage and its children."""
    detail = StageDetailResponse.model_validate(stage)
    detail.tasks = [TaskResponse.model_validate(task) for task in tasks]
    detail.blockers = [BlockerResponse.model_validate(blocker) for blocker in blockers]
    return detail


# --- Router ---


def create_stages_router() -> APIRouter:
    """Create the stage router.

    Returns:
        Configured APIRouter.
    """
    router = APIRouter(prefix="/stages", tags=["stages"])

    @router.get("/{stage_id}", response_model=StageDetailResponse)
    async def get_stage_endpoint(
        stage_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> StageDetailResponse:
        """Get a stage with its tasks and blockers."""
        async with session_factory() as session:
            scope = await load_stage_for(session, ctx, stage_id)
            tasks = await list_tasks(session, [stage_id])
            blockers = await list_blockers(session, [stage_id])
        return build_stage_detail(scope.stage, tasks, blockers)

    @router.patch("/{stage_id}", response_model=StageResponse)
    async def update_stage_endpoint(
        stage_id: UUID,
        body: StageUpdate,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> StageResponse:
        """Directly update a stage's status.

        Returns 409 for transitions the state machine does not allow; done
        is only reachable through the approve endpoint.
        """
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, ctx, stage_id, lock=True)
            stage = await services.lifecycle.update_stage(session, ctx, scope, body.status)
        return StageResponse.model_validate(stage)

    @router.delete("/{stage_id}", status_code=204)
    async def delete_stage_endpoint(
        stage_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> Response:
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, ctx, stage_id, lock=True)
            await services.lifecycle.delete_stage(session, ctx, scope)
        return Response(status_code=204)

    @router.post("/{stage_id}/approve", response_model=StageResponse)
    async def approve_stage_endpoint(
        stage_id: UUID,
        background_tasks: BackgroundTasks,
        body: StageApprove | None = None,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> StageResponse:
        """Approve a stage.

        Returns 422 with the incomplete required tasks when the gate fails.
        """
        note = body.note if body is not None else None
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, ctx, stage_id, lock=True)
            stage = await services.lifecycle.approve(session, ctx, scope, note)

        logger.info("stage_approved_via_api", stage_id=str(stage_id), approver=ctx.actor_id)

        background_tasks.add_task(
            services.webhooks.publish,
            WebhookEvent.STAGE_APPROVED,
            {
                "stage_id": str(stage.id),
                "release_id": str(stage.release_id),
                "environment": stage.environment_name,
                "approver": stage.approver,
                "note": note,
            },
        )
        return StageResponse.model_validate(stage)

    @router.get("/{stage_id}/tasks", response_model=list[TaskResponse])
    async def list_tasks_endpoint(
        stage_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> list[TaskResponse]:
        async with session_factory() as session:
            await load_stage_for(session, ctx, stage_id)
            tasks = await list_tasks(session, [stage_id])
        return [TaskResponse.model_validate(task) for task in tasks]

    @router.post("/{stage_id}/tasks", response_model=TaskResponse, status_code=201)
    async def create_task_endpoint(
        stage_id: UUID,
        body: TaskCreate,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> TaskResponse:
        """Create a task. The stage's status is not changed."""
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, ctx, stage_id, lock=True)
            task = await services.lifecycle.create_task(
                session,
                ctx,
                scope,
                title=body.title,
                details=body.details,
                owner=body.owner,
                required=body.required,
                status=body.status,
                evidence_url=body.evidence_url,
            )
        return TaskResponse.model_validate(task)

    @router.get("/{stage_id}/blockers", response_model=list[BlockerResponse])
    async def list_blockers_endpoint(
        stage_id: UUID,
        active: bool = False,
        ctx: ActorContext = Depends(get_actor_context),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> list[BlockerResponse]:
        async with session_factory() as session:
            await load_stage_for(session, ctx, stage_id)
            blockers = await list_blockers(session, [stage_id], active_only=active)
        return [BlockerResponse.model_validate(blocker) for blocker in blockers]

    @router.post("/{stage_id}/blockers", response_model=BlockerResponse, status_code=201)
    async def create_blocker_endpoint(
        stage_id: UUID,
        body: BlockerCreate,
        background_tasks: BackgroundTasks,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> BlockerResponse:
        """Open a blocker; the stage is forced into blocked."""
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, ctx, stage_id, lock=True)
            blocker = await services.lifecycle.create_blocker(
                session,
                ctx,
                scope,
                reason=body.reason,
                severity=body.severity,
                owner=body.owner,
                eta=body.eta,
            )

        background_tasks.add_task(
            services.webhooks.publish,
            WebhookEvent.BLOCKER_CREATED,
            {
                "blocker_id": str(blocker.id),
                "stage_id": str(stage_id),
                "release_id": str(scope.release_id),
                "severity": blocker.severity.value,
                "reason": blocker.reason,
            },
        )
        return BlockerResponse.model_validate(blocker)

    return router
