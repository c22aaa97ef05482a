"""Team, environment and membership REST API endpoints for Shipyard.

Creating a team makes the caller its admin and seeds the configured
default environments. Workspace management itself lives in the identity
layer; a team created without a workspace id starts a workspace of its own.
"""

from __future__ import annotations

import re
from datetime import datetime
from uuid import UUID, uuid4

import structlog
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import ActorContext, load_environment_for, load_team_for
from shipyard.database.models.team import TeamRole
from shipyard.database.queries.environment import list_environments
from shipyard.database.queries.team import (
    add_member,
    get_membership,
    list_members,
    list_teams_for_actor,
)
from shipyard.errors import ForbiddenError
from shipyard.services import Services
from shipyard.web.dependencies import get_actor_context, get_services, get_session_factory

logger = structlog.get_logger(__name__)

_COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")


# --- Pydantic Schemas ---


class TeamCreate(BaseModel):
    """Request schema for creating a team."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    workspace_id: UUID | None = None


class TeamResponse(BaseModel):
    """Response schema for team data."""

    id: UUID
    workspace_id: UUID
    name: str
    description: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class EnvironmentCreate(BaseModel):
    """Request schema for creating an environment."""

    name: str = Field(..., min_length=1, max_length=100)
    color: str = "#64748b"
    sort_order: int | None = Field(default=None, ge=0)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if not _COLOR_PATTERN.match(v):
            raise ValueError("color must be #rrggbb")
        return v.lower()


class EnvironmentResponse(BaseModel):
    """Response schema for environment data."""

    id: UUID
    team_id: UUID
    name: str
    color: str
    sort_order: int
    is_default: bool

    model_config = {"from_attributes": True}


class MemberCreate(BaseModel):
    """Request schema for adding a team member."""

    actor_id: str = Field(..., min_length=1)
    role: TeamRole = TeamRole.member


class MemberResponse(BaseModel):
    """Response schema for team membership."""

    team_id: UUID
    actor_id: str
    role: TeamRole
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Router ---


def create_teams_router() -> APIRouter:
    """Create the team, environment and membership router.

    Returns:
        Configured APIRouter.
    """
    router = APIRouter(tags=["teams"])

    @router.post("/teams/", response_model=TeamResponse, status_code=201)
    async def create_team_endpoint(
        body: TeamCreate,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> TeamResponse:
        """Create a team with default environments; the caller becomes admin."""
        async with session_factory() as session, session.begin():
            team = await services.provisioner.create_team(
                session,
                ctx,
                workspace_id=body.workspace_id or uuid4(),
                name=body.name,
                description=body.description,
            )
        return TeamResponse.model_validate(team)

    @router.get("/teams/", response_model=list[TeamResponse])
    async def list_teams_endpoint(
        ctx: ActorContext = Depends(get_actor_context),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> list[TeamResponse]:
        """List the teams the caller belongs to."""
        async with session_factory() as session:
            teams = await list_teams_for_actor(session, ctx.actor_id)
        return [TeamResponse.model_validate(team) for team in teams]

    @router.get("/teams/{team_id}", response_model=TeamResponse)
    async def get_team_endpoint(
        team_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> TeamResponse:
        async with session_factory() as session:
            scope = await load_team_for(session, ctx, team_id)
        return TeamResponse.model_validate(scope.team)

    @router.delete("/teams/{team_id}", status_code=204)
    async def delete_team_endpoint(
        team_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> Response:
        """Delete a team with all its environments and releases (admins only)."""
        async with session_factory() as session, session.begin():
            scope = await load_team_for(session, ctx, team_id)
            await _require_admin(session, ctx, scope.team_id)
            await services.provisioner.delete_team(session, ctx, scope)
        return Response(status_code=204)

    @router.get("/teams/{team_id}/environments", response_model=list[EnvironmentResponse])
    async def list_environments_endpoint(
        team_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> list[EnvironmentResponse]:
        async with session_factory() as session:
            scope = await load_team_for(session, ctx, team_id)
            environments = await list_environments(session, scope.team_id)
        return [EnvironmentResponse.model_validate(env) for env in environments]

    @router.post(
        "/teams/{team_id}/environments",
        response_model=EnvironmentResponse,
        status_code=201,
    )
    async def create_environment_endpoint(
        team_id: UUID,
        body: EnvironmentCreate,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> EnvironmentResponse:
        """Create an environment; 409 if the name exists in any letter case."""
        async with session_factory() as session, session.begin():
            scope = await load_team_for(session, ctx, team_id)
            environment = await services.provisioner.create_environment(
                session, ctx, scope, body.name, color=body.color, sort_order=body.sort_order
            )
        return EnvironmentResponse.model_validate(environment)

    @router.delete("/environments/{environment_id}", status_code=204)
    async def delete_environment_endpoint(
        environment_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> Response:
        """Delete an environment and its stages in every release."""
        async with session_factory() as session, session.begin():
            environment, scope = await load_environment_for(session, ctx, environment_id)
            await services.provisioner.delete_environment(session, ctx, scope, environment)
        return Response(status_code=204)

    @router.get("/teams/{team_id}/members", response_model=list[MemberResponse])
    async def list_members_endpoint(
        team_id: UUID,
        ctx: ActorContext = Depends(get_actor_context),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> list[MemberResponse]:
        async with session_factory() as session:
            scope = await load_team_for(session, ctx, team_id)
            members = await list_members(session, scope.team_id)
        return [MemberResponse.model_validate(member) for member in members]

    @router.post("/teams/{team_id}/members", response_model=MemberResponse, status_code=201)
    async def add_member_endpoint(
        team_id: UUID,
        body: MemberCreate,
        ctx: ActorContext = Depends(get_actor_context),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> MemberResponse:
        """Add an actor to the team (admins only)."""
        async with session_factory() as session, session.begin():
            scope = await load_team_for(session, ctx, team_id)
            await _require_admin(session, ctx, scope.team_id)
            member = await add_member(session, scope.team_id, body.actor_id, body.role)
        logger.info("team_member_added_via_api", team_id=str(team_id), actor_id=body.actor_id)
        return MemberResponse.model_validate(member)

    return router


async def _require_admin(session: AsyncSession, ctx: ActorContext, team_id: UUID) -> None:
    membership = await get_membership(session, team_id, ctx.actor_id)
    if membership is None or membership.role != TeamRole.admin:
        raise ForbiddenError(ctx.actor_id, team_id)
