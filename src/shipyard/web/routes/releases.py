"""Release REST API endpoints for Shipyard.

A release is created with one stage per environment its team has at that
moment. Status and progress are never stored; every response derives them
from the release's stages, tasks and blockers at read time.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Response
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import ActorContext, load_environment_for, load_release_for, load_team_for
from shipyard.database.queries.blocker import list_blockers
from shipyard.database.queries.stage import list_stages
from shipyard.database.queries.task import list_tasks
from shipyard.errors import FieldValidationError, ForbiddenError
from shipyard.lifecycle.aggregator import OutcomeFilter, ReleaseStatus, ReleaseSummary
from shipyard.services import Services
from shipyard.web.dependencies import get_actor_context, get_services, get_session_factory
from shipyard.web.routes.stages import StageDetailResponse, StageResponse, build_stage_detail
from shipyard.web.webhooks import WebhookEvent

logger = structlog.get_logger(__name__)

_COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")


# --- Pydantic Schemas ---


class ChangeWindow(BaseModel):
    """A release's planned change window."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self) -> ChangeWindow:
        if self.end < self.start:
            raise ValueError("change window end must not be before start")
        return self


class ReleaseCreate(BaseModel):
    """Request schema for creating a release."""

    team_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    version: str | None = Field(default=None, max_length=100)
    change_window: ChangeWindow | None = None


class ReleaseUpdate(BaseModel):
    """Request schema for updating a release; only supplied fields change."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    version: str | None = Field(default=None, max_length=100)
    change_window: ChangeWindow | None = None


class ReleaseResponse(BaseModel):
    """Response schema for release data."""

    id: UUID
    team_id: UUID
    name: str
    version: str | None
    change_window: dict[str, Any] | None
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ReleaseSummaryResponse(ReleaseResponse):
    """A release with its derived status and progress."""

    status: ReleaseStatus
    progress: int
    outcome: OutcomeFilter
    stage_count: int
    task_count: int
    done_task_count: int
    active_blocker_count: int

    @classmethod
    def from_summary(cls, summary: ReleaseSummary) -> ReleaseSummaryResponse:
        base = ReleaseResponse.model_validate(summary.release)
        return cls(
            **base.model_dump(),
            status=summary.status,
            progress=summary.progress,
            outcome=summary.outcome,
            stage_count=summary.stage_count,
            task_count=summary.task_count,
            done_task_count=summary.done_task_count,
            active_blocker_count=summary.active_blocker_count,
        )


class ReleaseDetailResponse(ReleaseSummaryResponse):
    """A release summary with every stage, task and blocker."""

    stages: list[StageDetailResponse] = Field(default_factory=list)


class ReleaseStageCreate(BaseModel):
    """Request schema for adding a stage to an existing release.

    Either name an existing environment by id, or give an environment name
    (and colour) to create; an existing environment with that name is
    reused.
    """

    environment_id: UUID | None = None
    environment_name: str | None = Field(default=None, min_length=1, max_length=100)
    color: str = "#64748b"

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if not _COLOR_PATTERN.match(v):
            raise ValueError("color must be #rrggbb")
        return v.lower()

    @model_validator(mode="after")
    def check_target(self) -> ReleaseStageCreate:
        if (self.environment_id is None) == (self.environment_name is None):
            raise ValueError("exactly one of environment_id or environment_name is required")
        return self


class ReleaseStageCreated(StageResponse):
    """A newly added stage and whether an existing environment was reused."""

    environment_reused: bool = False


# --- Router ---


def create_releases_router() -> APIRouter:
    """Create the release router.

    Returns:
        Configured APIRouter.
    """
    router = APIRouter(prefix="/releases", tags=["releases"])

    @router.get("/", response_model=list[ReleaseSummaryResponse])
    async def list_releases_endpoint(
        team_id: UUID | None = None,
        outcome: OutcomeFilter = OutcomeFilter.all,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> list[ReleaseSummaryResponse]:
        """List releases visible to the caller with derived status and progress.

        ``outcome`` narrows the list to ongoing, completed or blocked
        releases.
        """
        async with session_factory() as session:
            summaries = await services.aggregator.list_summaries(
                session, ctx, team_id=team_id, outcome=outcome
            )
        return [ReleaseSummaryResponse.from_summary(summary) for summary in summaries]

    @router.post("/", response_model=ReleaseDetailResponse, status_code=201)
    async def create_release_endpoint(
        body: ReleaseCreate,
        background_tasks: BackgroundTasks,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> ReleaseDetailResponse:
        """Create a release with a not_started stage per team environment."""
        change_window = body.change_window.model_dump(mode="json") if body.change_window else None
        async with session_factory() as session, session.begin():
            scope = await load_team_for(session, ctx, body.team_id)
            release, stages = await services.provisioner.create_release(
                session,
                ctx,
                scope,
                name=body.name,
                version=body.version,
                change_window=change_window,
            )
            summary = (await services.aggregator.summarize(session, [release]))[0]

        detail = ReleaseDetailResponse(**ReleaseSummaryResponse.from_summary(summary).model_dump())
        detail.stages = [build_stage_detail(stage, [], []) for stage in stages]

        background_tasks.add_task(
            services.webhooks.publish,
            WebhookEvent.RELEASE_CREATED,
            {
                "release_id": str(release.id),
                "team_id": str(release.team_id),
                "name": release.name,
                "version": release.version,
                "stages": [stage.environment_name for stage in stages],
            },
        )
        return detail

    @router.get("/{release_id}", response_model=ReleaseDetailResponse)
    async def get_release_endpoint(
        release_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> ReleaseDetailResponse:
        """Get a release with its stages, tasks, blockers and derived state."""
        async with session_factory() as session:
            scope = await load_release_for(session, ctx, release_id)
            summary = (await services.aggregator.summarize(session, [scope.release]))[0]
            stages = await list_stages(session, [release_id])
            stage_ids = [stage.id for stage in stages]
            tasks = await list_tasks(session, stage_ids)
            blockers = await list_blockers(session, stage_ids)

        detail = ReleaseDetailResponse(**ReleaseSummaryResponse.from_summary(summary).model_dump())
        detail.stages = [
            build_stage_detail(
                stage,
                [task for task in tasks if task.stage_id == stage.id],
                [blocker for blocker in blockers if blocker.stage_id == stage.id],
            )
            for stage in stages
        ]
        return detail

    @router.patch("/{release_id}", response_model=ReleaseResponse)
    async def update_release_endpoint(
        release_id: UUID,
        body: ReleaseUpdate,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> ReleaseResponse:
        updates = body.model_dump(mode="json", exclude_unset=True)
        if "name" in updates and updates["name"] is None:
            raise FieldValidationError({"name": "name cannot be cleared"})

        async with session_factory() as session, session.begin():
            scope = await load_release_for(session, ctx, release_id)
            release = await services.provisioner.update_release(session, ctx, scope, **updates)
        return ReleaseResponse.model_validate(release)

    @router.delete("/{release_id}", status_code=204)
    async def delete_release_endpoint(
        release_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> Response:
        """Delete a release with its stages, tasks, blockers and diagram."""
        async with session_factory() as session, session.begin():
            scope = await load_release_for(session, ctx, release_id)
            await services.provisioner.delete_release(session, ctx, scope)
        return Response(status_code=204)

    @router.post("/{release_id}/stages", response_model=ReleaseStageCreated, status_code=201)
    async def add_release_stage_endpoint(
        release_id: UUID,
        body: ReleaseStageCreate,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> ReleaseStageCreated:
        """Add a stage for one environment to this release only.

        Returns 409 if the release already has a stage for the environment.
        """
        async with session_factory() as session, session.begin():
            scope = await load_release_for(session, ctx, release_id)
            reused = False
            if body.environment_id is not None:
                environment, env_scope = await load_environment_for(
                    session, ctx, body.environment_id
                )
                if env_scope.team_id != scope.team_id:
                    raise ForbiddenError(ctx.actor_id, env_scope.team_id)
                stage = await services.provisioner.add_stage_for_environment(
                    session, ctx, scope, environment
                )
            else:
                stage, reused = await services.provisioner.add_environment_to_release(
                    session, ctx, scope, body.environment_name or "", color=body.color
                )

        logger.info(
            "release_stage_added",
            release_id=str(release_id),
            stage_id=str(stage.id),
            environment_reused=reused,
        )
        created = ReleaseStageCreated.model_validate(stage)
        created.environment_reused = reused
        return created

    return router
