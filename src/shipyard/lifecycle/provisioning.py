"""Team, environment and release provisioning for Shipyard.

Creating a team seeds its default environments and makes the creator an
admin member. Creating a release instantiates one stage per environment
the team has at that moment. Adding an environment to a single release
reuses an existing environment of the same name instead of failing on the
uniqueness conflict.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.access import ActorContext, ResourceScope
from shipyard.config import EnvironmentSeed
from shipyard.database.models.environment import Environment
from shipyard.database.models.release import Release
from shipyard.database.models.stage import Stage
from shipyard.database.models.team import Team, TeamRole
from shipyard.database.queries import environment as environment_queries
from shipyard.database.queries import release as release_queries
from shipyard.database.queries import team as team_queries
from shipyard.errors import ConflictError
from shipyard.lifecycle.activity import ActivityLogger
from shipyard.lifecycle.state_machine import StageLifecycleEngine

logger = structlog.get_logger(__name__)


class ReleaseProvisioner:
    """Creates and removes teams, environments and releases.

    Attributes:
        engine: Stage lifecycle engine used to instantiate stages.
        activity: Activity logger.
        default_environments: Environments seeded into every new team.
    """

    def __init__(
        self,
        engine: StageLifecycleEngine,
        activity: ActivityLogger,
        default_environments: list[EnvironmentSeed],
    ) -> None:
        self.engine = engine
        self.activity = activity
        self.default_environments = default_environments

    async def create_team(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        workspace_id: UUID,
        name: str,
        description: str | None = None,
    ) -> Team:
        """Create a team, its default environments and the creator's membership.

        Args:
            session: Active async database session.
            ctx: Creating actor; becomes an admin member.
            workspace_id: Workspace of the new team.
            name: Team name, unique within the workspace.
            description: Optional description.

        Returns:
            The new team.

        Raises:
            ConflictError: If the workspace already has a team with this name.
        """
        team = await team_queries.create_team(session, workspace_id, name, description)
        await team_queries.add_member(session, team.id, ctx.actor_id, TeamRole.admin)

        environments = [
            await environment_queries.create_environment(
                session,
                team.id,
                seed.name,
                color=seed.color,
                sort_order=position,
                is_default=True,
            )
            for position, seed in enumerate(self.default_environments, start=1)
        ]

        await self.activity.append(
            session,
            ctx,
            "team.created",
            ResourceScope(team=team),
            {"name": name, "environments": [environment.name for environment in environments]},
        )
        return team

    async def delete_team(self, session: AsyncSession, ctx: ActorContext, scope: ResourceScope) -> None:
        """Delete a team and everything it owns."""
        await self.activity.append(
            session, ctx, "team.deleted", scope, {"team_id": str(scope.team_id), "name": scope.team.name}
        )
        await team_queries.delete_team(session, scope.team_id)

    async def create_environment(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        name: str,
        color: str = "#64748b",
        sort_order: int | None = None,
    ) -> Environment:
        """Create an environment in the scoped team.

        Existing releases are not given a stage for it.

        Raises:
            ConflictError: If the name is taken (case-insensitive).
        """
        environment = await environment_queries.create_environment(
            session, scope.team_id, name, color=color, sort_order=sort_order
        )
        await self.activity.append(
            session,
            ctx,
            "environment.created",
            scope,
            {"environment_id": str(environment.id), "name": environment.name},
        )
        return environment

    async def delete_environment(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        environment: Environment,
    ) -> None:
        """Delete an environment; its stages in every release go with it."""
        await self.activity.append(
            session,
            ctx,
            "environment.deleted",
            scope,
            {"environment_id": str(environment.id), "name": environment.name},
        )
        await environment_queries.delete_environment(session, environment.id)

    async def create_release(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        name: str,
        version: str | None = None,
        change_window: dict[str, Any] | None = None,
    ) -> tuple[Release, list[Stage]]:
        """Create a release with one stage per current team environment.

        Args:
            session: Active async database session.
            ctx: Creating actor.
            scope: Team scope.
            name: Release name.
            version: Optional version string.
            change_window: Optional change window document.

        Returns:
            The release and its stages in pipeline order.
        """
        release = await release_queries.create_release(
            session,
            team_id=scope.team_id,
            name=name,
            created_by=ctx.actor_id,
            version=version,
            change_window=change_window,
        )
        stages = await self.engine.create_default_stages(session, ctx, release)

        release_scope = ResourceScope(team=scope.team, release=release)
        await self.activity.append(
            session,
            ctx,
            "release.created",
            release_scope,
            {"release_name": name, "version": version, "stage_count": len(stages)},
        )
        return release, stages

    async def update_release(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        **updates: Any,
    ) -> Release:
        """Update a release's name, version or change window."""
        if not updates:
            return scope.release
        release = await release_queries.update_release(session, scope.release_id, **updates)
        await self.activity.append(
            session, ctx, "release.updated", scope, {"fields": sorted(updates)}
        )
        return release

    async def delete_release(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
    ) -> None:
        """Delete a release with its stages, tasks, blockers and diagram."""
        await self.activity.append(
            session,
            ctx,
            "release.deleted",
            scope,
            {"release_id": str(scope.release_id), "release_name": scope.release.name},
        )
        await release_queries.delete_release(session, scope.release_id)

    async def add_environment_to_release(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        name: str,
        color: str = "#64748b",
    ) -> tuple[Stage, bool]:
        """Add a stage for a named environment to one release.

        The environment is created in the team; if the name is already
        taken the existing environment is reused.

        Args:
            session: Active async database session.
            ctx: Acting identity.
            scope: Release scope.
            name: Environment name.
            color: Colour used if the environment has to be created.

        Returns:
            The new stage and whether an existing environment was reused.

        Raises:
            ConflictError: If the release already has a stage for the
                environment.
        """
        reused = False
        try:
            environment = await self.create_environment(
                session, ctx, ResourceScope(team=scope.team), name, color=color
            )
        except ConflictError as exc:
            environment = None
            if exc.existing_id is not None:
                environment = await environment_queries.get_environment(session, exc.existing_id)
            if environment is None:
                raise
            reused = True
            logger.info(
                "environment_reused",
                environment_id=str(environment.id),
                release_id=str(scope.release_id),
                conflict=str(exc),
            )

        stage = await self.engine.add_stage(session, ctx, scope, environment)
        return stage, reused

    async def add_stage_for_environment(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        environment: Environment,
    ) -> Stage:
        """Add a stage for an existing environment of the release's team."""
        return await self.engine.add_stage(session, ctx, scope, environment)
