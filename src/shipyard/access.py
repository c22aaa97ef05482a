"""Actor context and team-scoped access checks for Shipyard.

Every lifecycle, layout, aggregator and activity call receives an explicit
ActorContext instead of reading ambient request state. Access is granted
when the actor is a member of the team that owns the resource; the
resource is walked up (blocker/task -> stage -> release -> team) to find
that team.

The loaders below combine lookup and authorization: each returns the
entity together with a ResourceScope describing its ancestry, or raises
NotFoundError / ForbiddenError.

Example:
    >>> ctx = ActorContext(actor_id="alice")
    >>> async with session_factory() as session, session.begin():
    ...     scope = await load_stage_for(session, ctx, stage_id)
    ...     scope.stage.status
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.database.models.blocker import Blocker
from shipyard.database.models.environment import Environment
from shipyard.database.models.release import Release
from shipyard.database.models.stage import Stage
from shipyard.database.models.task import Task
from shipyard.database.models.team import Team, TeamMember
from shipyard.database.queries.blocker import get_blocker
from shipyard.database.queries.environment import get_environment
from shipyard.database.queries.release import get_release
from shipyard.database.queries.stage import get_stage
from shipyard.database.queries.task import get_task
from shipyard.database.queries.team import get_membership, get_team
from shipyard.errors import ForbiddenError, NotFoundError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ActorContext:
    """Identity and team scope of the caller.

    Attributes:
        actor_id: Authenticated actor identity.
        team_id: Team the caller is acting within, if it named one.
    """

    actor_id: str
    team_id: UUID | None = None


@dataclass
class ResourceScope:
    """A resource's ancestry, resolved during the access check.

    Attributes:
        team: Owning team.
        release: Owning release, when the resource is release-scoped.
        stage: Owning stage, when the resource is stage-scoped.
    """

    team: Team
    release: Release | None = None
    stage: Stage | None = None

    @property
    def workspace_id(self) -> UUID:
        return self.team.workspace_id

    @property
    def team_id(self) -> UUID:
        return self.team.id

    @property
    def release_id(self) -> UUID | None:
        return self.release.id if self.release is not None else None

    @property
    def stage_id(self) -> UUID | None:
        return self.stage.id if self.stage is not None else None


async def require_team_access(
    session: AsyncSession,
    ctx: ActorContext,
    team_id: UUID,
) -> TeamMember:
    """Check that the actor may act on resources of a team.

    Args:
        session: Active async database session.
        ctx: Caller identity.
        team_id: Team owning the resource.

    Returns:
        The actor's membership row.

    Raises:
        ForbiddenError: If the context is scoped to another team or the
            actor is not a member.
    """
    if ctx.team_id is not None and ctx.team_id != team_id:
        logger.warning(
            "team_scope_mismatch",
            actor_id=ctx.actor_id,
            scoped_team_id=str(ctx.team_id),
            resource_team_id=str(team_id),
        )
        raise ForbiddenError(ctx.actor_id, team_id)

    membership = await get_membership(session, team_id, ctx.actor_id)
    if membership is None:
        logger.warning("team_access_denied", actor_id=ctx.actor_id, team_id=str(team_id))
        raise ForbiddenError(ctx.actor_id, team_id)
    return membership


async def load_team_for(session: AsyncSession, ctx: ActorContext, team_id: UUID) -> ResourceScope:
    """Load a team the actor belongs to.

    Raises:
        NotFoundError: If the team does not exist.
        ForbiddenError: If the actor is not a member.
    """
    team = await get_team(session, team_id)
    if team is None:
        raise NotFoundError("team", team_id)
    await require_team_access(session, ctx, team.id)
    return ResourceScope(team=team)


async def load_release_for(
    session: AsyncSession,
    ctx: ActorContext,
    release_id: UUID,
) -> ResourceScope:
    """Load a release and its team, checking access.

    Raises:
        NotFoundError: If the release does not exist.
        ForbiddenError: If the actor is not a member of the release's team.
    """
    release = await get_release(session, release_id)
    if release is None:
        raise NotFoundError("release", release_id)
    scope = await load_team_for(session, ctx, release.team_id)
    scope.release = release
    return scope


async def load_stage_for(
    session: AsyncSession,
    ctx: ActorContext,
    stage_id: UUID,
    lock: bool = False,
) -> ResourceScope:
    """Load a stage with its release and team, checking access.

    Args:
        session: Active async database session.
        ctx: Caller identity.
        stage_id: Stage to load.
        lock: Hold the stage row lock until the transaction ends. Passed
            by every request that changes a stage's status, tasks or
            blockers.

    Raises:
        NotFoundError: If the stage does not exist.
        ForbiddenError: If the actor is not a member of the owning team.
    """
    stage = await get_stage(session, stage_id, for_update=lock)
    if stage is None:
        raise NotFoundError("stage", stage_id)
    scope = await load_release_for(session, ctx, stage.release_id)
    scope.stage = stage
    return scope


async def load_environment_for(
    session: AsyncSession,
    ctx: ActorContext,
    environment_id: UUID,
) -> tuple[Environment, ResourceScope]:
    """Load an environment and its team, checking access."""
    environment = await get_environment(session, environment_id)
    if environment is None:
        raise NotFoundError("environment", environment_id)
    scope = await load_team_for(session, ctx, environment.team_id)
    return environment, scope


async def load_task_for(
    session: AsyncSession,
    ctx: ActorContext,
    task_id: UUID,
    lock: bool = False,
) -> tuple[Task, ResourceScope]:
    """Load a task with its stage, release and team, checking access.

    With ``lock`` the stage row is locked and the task re-read afterwards,
    so its state reflects any change committed while waiting for the lock.
    """
    task = await get_task(session, task_id)
    if task is None:
        raise NotFoundError("task", task_id)
    scope = await load_stage_for(session, ctx, task.stage_id, lock=lock)
    if lock:
        task = await session.get(Task, task_id, populate_existing=True)
        if task is None:
            raise NotFoundError("task", task_id)
    return task, scope


async def load_blocker_for(
    session: AsyncSession,
    ctx: ActorContext,
    blocker_id: UUID,
    lock: bool = False,
) -> tuple[Blocker, ResourceScope]:
    """Load a blocker with its stage, release and team, checking access.

    ``lock`` behaves as for load_task_for.
    """
    blocker = await get_blocker(session, blocker_id)
    if blocker is None:
        raise NotFoundError("blocker", blocker_id)
    scope = await load_stage_for(session, ctx, blocker.stage_id, lock=lock)
    if lock:
        blocker = await session.get(Blocker, blocker_id, populate_existing=True)
        if blocker is None:
            raise NotFoundError("blocker", blocker_id)
    return blocker, scope
