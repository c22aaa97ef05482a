"""Stage state machine and approval gate for Shipyard.

This module implements the stage lifecycle: which status changes may be
requested directly, how blockers force a stage into and out of
``blocked``, and the approval gate that is the only way into ``done``.

    not_started -> in_progress -> {blocked <-> in_progress} -> done

Task completion never moves a stage on its own. Status changes only
through a direct status update, blocker activity, or approval. Every
mutation refreshes the stage's ``last_update`` and is recorded in the
activity log. Nothing here commits; callers wrap each request in one
transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.access import ActorContext, ResourceScope
from shipyard.database.models.base import utcnow
from shipyard.database.models.blocker import Blocker, BlockerSeverity
from shipyard.database.models.environment import Environment
from shipyard.database.models.release import Release
from shipyard.database.models.stage import Stage, StageStatus
from shipyard.database.models.task import Task, TaskStatus
from shipyard.database.queries import blocker as blocker_queries
from shipyard.database.queries import stage as stage_queries
from shipyard.database.queries import task as task_queries
from shipyard.database.queries.environment import list_environments
from shipyard.errors import ApprovalRejectedError, InvalidTransitionError
from shipyard.lifecycle.activity import ActivityLogger

logger = structlog.get_logger(__name__)


# Transitions allowed through a direct status update. ``done`` is only
# reachable through approve().
VALID_TRANSITIONS: dict[StageStatus, set[StageStatus]] = {
    StageStatus.not_started: {StageStatus.in_progress, StageStatus.blocked},
    StageStatus.in_progress: {StageStatus.blocked},
    StageStatus.blocked: {StageStatus.in_progress},
    StageStatus.done: set(),
}


def validate_transition(current: StageStatus, target: StageStatus) -> bool:
    """Validate if a direct status update is allowed.

    Args:
        current: Current stage status.
        target: Requested stage status.

    Returns:
        True if the transition is valid according to VALID_TRANSITIONS.
    """
    return target in VALID_TRANSITIONS.get(current, set())


def incomplete_required_tasks(tasks: list[Task]) -> list[Task]:
    """Return the tasks that keep a stage from being approved.

    Optional tasks never count. A required task counts until it is done,
    including when it has been marked not applicable.
    """
    return [task for task in tasks if task.required and task.status != TaskStatus.done]


class StageLifecycleEngine:
    """Enforces stage status rules and records every stage-scoped mutation.

    Attributes:
        activity: Activity logger receiving one entry per mutation.
        reopen_done_stages: Whether a new active blocker may force a done
            stage back to blocked.
    """

    def __init__(self, activity: ActivityLogger, reopen_done_stages: bool = True) -> None:
        self.activity = activity
        self.reopen_done_stages = reopen_done_stages
        self.logger = logger.bind(component="StageLifecycleEngine")

    def _set_status(self, stage: Stage, target: StageStatus, now: datetime) -> StageStatus:
        previous = stage.status
        stage.status = target
        if target == StageStatus.in_progress and stage.started_at is None:
            stage.started_at = now
        stage.last_update = now
        self.logger.info(
            "stage_transition",
            stage_id=str(stage.id),
            from_status=previous.value,
            to_status=target.value,
        )
        return previous

    # --- Stages ---

    async def create_default_stages(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        release: Release,
    ) -> list[Stage]:
        """Create one not_started stage per environment of the release's team.

        Called once, when the release is created. Environments added to the
        team later are not added to existing releases.

        Args:
            session: Active async database session.
            ctx: Actor creating the release.
            release: The freshly created release.

        Returns:
            The created stages in pipeline order.
        """
        environments = await list_environments(session, release.team_id)
        stages = [
            await stage_queries.create_stage(session, release.id, environment)
            for environment in environments
        ]
        self.logger.info(
            "default_stages_created",
            release_id=str(release.id),
            actor_id=ctx.actor_id,
            stage_count=len(stages),
        )
        return stages

    async def add_stage(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        environment: Environment,
    ) -> Stage:
        """Add the stage for one environment to an existing release.

        Args:
            session: Active async database session.
            ctx: Acting identity.
            scope: Release scope (team and release resolved).
            environment: Environment of the release's team.

        Returns:
            The new stage.

        Raises:
            ConflictError: If the release already has a stage for it.
        """
        stage = await stage_queries.create_stage(session, scope.release_id, environment)
        stage_scope = ResourceScope(team=scope.team, release=scope.release, stage=stage)
        await self.activity.append(
            session,
            ctx,
            "stage.created",
            stage_scope,
            {"environment_id": str(environment.id), "environment_name": environment.name},
        )
        return stage

    async def update_stage(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        status: StageStatus,
    ) -> Stage:
        """Apply a direct status update.

        Args:
            session: Active async database session.
            ctx: Acting identity.
            scope: Stage scope.
            status: Requested status.

        Returns:
            The stage, unchanged if it already had the requested status.

        Raises:
            InvalidTransitionError: If the transition is not allowed, which
                includes every request to move into done.
        """
        stage = scope.stage
        if stage.status == status:
            return stage
        if not validate_transition(stage.status, status):
            raise InvalidTransitionError(stage.status.value, status.value, str(stage.id))

        previous = self._set_status(stage, status, utcnow())
        await session.flush()
        await self.activity.append(
            session,
            ctx,
            "stage.updated",
            scope,
            {"from": previous.value, "to": status.value},
        )
        return stage

    async def approve(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        note: str | None = None,
    ) -> Stage:
        """Approve a stage, moving it to done.

        Args:
            session: Active async database session.
            ctx: Approving actor.
            scope: Stage scope.
            note: Optional approval note.

        Returns:
            The approved stage with approver and ended_at set.

        Raises:
            ApprovalRejectedError: If any required task is not done.
        """
        stage = scope.stage
        tasks = await task_queries.list_tasks(session, [stage.id])
        incomplete = incomplete_required_tasks(tasks)
        if incomplete:
            self.logger.warning(
                "stage_approval_rejected",
                stage_id=str(stage.id),
                actor_id=ctx.actor_id,
                incomplete_count=len(incomplete),
            )
            raise ApprovalRejectedError(
                stage.id,
                [
                    {"id": str(task.id), "title": task.title, "status": task.status.value}
                    for task in incomplete
                ],
            )

        now = utcnow()
        previous = self._set_status(stage, StageStatus.done, now)
        stage.approver = ctx.actor_id
        stage.approval_note = note
        stage.ended_at = now
        await session.flush()

        await self.activity.append(
            session,
            ctx,
            "stage.approved",
            scope,
            {"from": previous.value, "approver": ctx.actor_id, "note": note},
        )
        self.logger.info("stage_approved", stage_id=str(stage.id), approver=ctx.actor_id)
        return stage

    async def delete_stage(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
    ) -> None:
        """Delete a stage with its tasks, blockers and task diagram."""
        stage = scope.stage
        await self.activity.append(
            session,
            ctx,
            "stage.deleted",
            scope,
            {"stage_id": str(stage.id), "environment_name": stage.environment_name},
        )
        await stage_queries.delete_stage(session, stage.id)

    # --- Tasks ---

    async def record_task_mutation(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        task: Task,
        action: str,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """Record a task change against its stage.

        The stage's status is left alone; only ``last_update`` moves.
        """
        scope.stage.last_update = utcnow()
        await session.flush()
        payload = {"task_id": str(task.id), "title": task.title}
        payload.update(meta or {})
        await self.activity.append(session, ctx, action, scope, payload)

    async def create_task(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        title: str,
        details: str | None = None,
        owner: str | None = None,
        required: bool = True,
        status: TaskStatus = TaskStatus.todo,
        evidence_url: str | None = None,
    ) -> Task:
        """Create a task on the scoped stage."""
        task = await task_queries.create_task(
            session,
            stage_id=scope.stage_id,
            title=title,
            details=details,
            owner=owner,
            required=required,
            status=status,
            evidence_url=evidence_url,
        )
        await self.record_task_mutation(
            session, ctx, scope, task, "task.created", {"required": required, "status": status.value}
        )
        return task

    async def update_task(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        task: Task,
        **updates: Any,
    ) -> Task:
        """Update a task's fields."""
        if not updates:
            return task
        previous_status = task.status
        task = await task_queries.update_task(session, task.id, **updates)
        meta: dict[str, Any] = {"fields": sorted(updates)}
        if task.status != previous_status:
            meta["from"] = previous_status.value
            meta["to"] = task.status.value
        await self.record_task_mutation(session, ctx, scope, task, "task.updated", meta)
        return task

    async def delete_task(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        task: Task,
    ) -> None:
        """Delete a task."""
        await self.record_task_mutation(session, ctx, scope, task, "task.deleted")
        await task_queries.delete_task(session, task.id)

    # --- Blockers ---

    async def record_blocker_created(
        self,
        session: AsyncSession,
        blocker: Blocker,
        stage: Stage,
    ) -> StageStatus | None:
        """Activate a blocker and force its stage into blocked.

        A done stage is only reopened when ``reopen_done_stages`` is set.

        Returns:
            The stage's previous status if it changed, else None.
        """
        blocker.active = True
        blocker.resolved_at = None
        now = utcnow()
        previous = None
        if stage.status != StageStatus.blocked:
            if stage.status == StageStatus.done and not self.reopen_done_stages:
                self.logger.info(
                    "done_stage_not_reopened",
                    stage_id=str(stage.id),
                    blocker_id=str(blocker.id),
                )
            else:
                previous = self._set_status(stage, StageStatus.blocked, now)
        stage.last_update = now
        await session.flush()
        return previous

    async def record_blocker_resolved(
        self,
        session: AsyncSession,
        blocker: Blocker,
        stage: Stage,
    ) -> StageStatus | None:
        """Deactivate a blocker, unblocking its stage if it was the last one.

        Returns:
            The stage's previous status if it changed, else None.
        """
        now = utcnow()
        blocker.active = False
        blocker.resolved_at = now
        await session.flush()

        previous = None
        remaining = await blocker_queries.count_active_blockers(session, stage.id)
        if remaining == 0 and stage.status == StageStatus.blocked:
            previous = self._set_status(stage, StageStatus.in_progress, now)
        stage.last_update = now
        await session.flush()
        return previous

    async def create_blocker(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        reason: str,
        severity: BlockerSeverity = BlockerSeverity.P2,
        owner: str | None = None,
        eta: datetime | None = None,
    ) -> Blocker:
        """Open an active blocker on the scoped stage."""
        blocker = await blocker_queries.create_blocker(
            session,
            stage_id=scope.stage_id,
            reason=reason,
            severity=severity,
            owner=owner,
            eta=eta,
        )
        previous = await self.record_blocker_created(session, blocker, scope.stage)
        await self.activity.append(
            session,
            ctx,
            "blocker.created",
            scope,
            _blocker_meta(blocker, scope.stage, previous),
        )
        return blocker

    async def update_blocker(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        blocker: Blocker,
        **updates: Any,
    ) -> Blocker:
        """Update a blocker; toggling ``active`` resolves or reopens it."""
        active = updates.pop("active", None)
        if updates:
            blocker = await blocker_queries.update_blocker(session, blocker.id, **updates)

        previous = None
        action = "blocker.updated"
        if active is False and blocker.active:
            previous = await self.record_blocker_resolved(session, blocker, scope.stage)
            action = "blocker.resolved"
        elif active is True and not blocker.active:
            previous = await self.record_blocker_created(session, blocker, scope.stage)
        elif not updates:
            return blocker
        else:
            scope.stage.last_update = utcnow()
            await session.flush()

        meta = _blocker_meta(blocker, scope.stage, previous)
        meta["fields"] = sorted(updates) + (["active"] if active is not None else [])
        await self.activity.append(session, ctx, action, scope, meta)
        return blocker

    async def delete_blocker(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        scope: ResourceScope,
        blocker: Blocker,
    ) -> None:
        """Delete a blocker, resolving it first if it is still active."""
        if blocker.active:
            previous = await self.record_blocker_resolved(session, blocker, scope.stage)
            await self.activity.append(
                session,
                ctx,
                "blocker.resolved",
                scope,
                _blocker_meta(blocker, scope.stage, previous),
            )
        await self.activity.append(
            session,
            ctx,
            "blocker.deleted",
            scope,
            {"blocker_id": str(blocker.id), "reason": blocker.reason},
        )
        await blocker_queries.delete_blocker(session, blocker.id)


def _blocker_meta(
    blocker: Blocker,
    stage: Stage,
    previous: StageStatus | None,
) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "blocker_id": str(blocker.id),
        "severity": blocker.severity.value,
        "reason": blocker.reason,
        "stage_status": stage.status.value,
    }
    if previous is not None:
        meta["stage_status_from"] = previous.value
    return meta
