"""Integration tests for the lifecycle services against SQLite.

Tests cover:
- Blocker resolve, reopen and delete
- Reopening done stages on or off
- Activity entries and feed filters
- Access checks for non-members and team-scoped contexts
"""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import (
    ActorContext,
    ResourceScope,
    load_blocker_for,
    load_release_for,
    load_stage_for,
    load_task_for,
    load_team_for,
)
from shipyard.config import LifecycleConfig, ShipyardConfig
from shipyard.database.models import Stage, StageStatus, TaskStatus
from shipyard.database.queries.blocker import get_blocker
from shipyard.database.queries.stage import get_stage
from shipyard.errors import (
    ConflictError,
    FieldValidationError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from shipyard.services import Services, build_services

SessionFactory = async_sessionmaker[AsyncSession]


class TestBlockers:
    """Blocker lifecycle and its effect on stage status."""

    @pytest.mark.asyncio
    async def test_reopen_resolved_blocker_blocks_again(
        self,
        session_factory: SessionFactory,
        services: Services,
        actor: ActorContext,
        stages: list[Stage],
    ) -> None:
        stage_id = stages[0].id
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stage_id)
            blocker = await services.lifecycle.create_blocker(session, actor, scope, "Cert expired")

        async with session_factory() as session, session.begin():
            blocker, scope = await load_blocker_for(session, actor, blocker.id)
            await services.lifecycle.update_blocker(session, actor, scope, blocker, active=False)
            assert scope.stage.status == StageStatus.in_progress

        async with session_factory() as session, session.begin():
            blocker, scope = await load_blocker_for(session, actor, blocker.id)
            await services.lifecycle.update_blocker(session, actor, scope, blocker, active=True)

        async with session_factory() as session:
            stored = await get_blocker(session, blocker.id)
            stage = await get_stage(session, stage_id)
        assert stored.active is True
        assert stored.resolved_at is None
        assert stage.status == StageStatus.blocked

    @pytest.mark.asyncio
    async def test_field_update_keeps_status(
        self,
        session_factory: SessionFactory,
        services: Services,
        actor: ActorContext,
        stages: list[Stage],
    ) -> None:
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stages[0].id)
            blocker = await services.lifecycle.create_blocker(session, actor, scope, "Flaky job")

        async with session_factory() as session, session.begin():
            blocker, scope = await load_blocker_for(session, actor, blocker.id)
            updated = await services.lifecycle.update_blocker(
                session, actor, scope, blocker, owner="bob"
            )

        assert updated.owner == "bob"
        assert updated.active is True
        assert scope.stage.status == StageStatus.blocked

    @pytest.mark.asyncio
    async def test_deleting_active_blocker_resolves_it(
        self,
        session_factory: SessionFactory,
        services: Services,
        actor: ActorContext,
        release_scope: ResourceScope,
        stages: list[Stage],
    ) -> None:
        stage_id = stages[0].id
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stage_id)
            blocker = await services.lifecycle.create_blocker(session, actor, scope, "Cert expired")

        async with session_factory() as session, session.begin():
            blocker, scope = await load_blocker_for(session, actor, blocker.id)
            await services.lifecycle.delete_blocker(session, actor, scope, blocker)

        async with session_factory() as session:
            assert await get_blocker(session, blocker.id) is None
            assert (await get_stage(session, stage_id)).status == StageStatus.in_progress
            entries = await services.activity.query(session, actor, stage_id=stage_id)
        actions = {entry.action for entry in entries}
        assert {"blocker.created", "blocker.resolved", "blocker.deleted"} <= actions

    @pytest.mark.asyncio
    async def test_done_stage_kept_when_reopen_disabled(
        self,
        config: ShipyardConfig,
        session_factory: SessionFactory,
        actor: ActorContext,
        stages: list[Stage],
    ) -> None:
        strict = build_services(
            config.model_copy(
                update={"lifecycle": LifecycleConfig(blockers_reopen_done_stages=False)}
            )
        )
        stage_id = stages[0].id
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stage_id)
            await strict.lifecycle.approve(session, actor, scope)

        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stage_id)
            blocker = await strict.lifecycle.create_blocker(session, actor, scope, "Late finding")

        async with session_factory() as session:
            assert (await get_stage(session, stage_id)).status == StageStatus.done
            assert (await get_blocker(session, blocker.id)).active is True


class TestStagesAndTasks:
    """Stage and task mutations."""

    @pytest.mark.asyncio
    async def test_invalid_transition_leaves_stage_unchanged(
        self,
        session_factory: SessionFactory,
        services: Services,
        actor: ActorContext,
        stages: list[Stage],
    ) -> None:
        async with session_factory() as session:
            scope = await load_stage_for(session, actor, stages[0].id)
            with pytest.raises(InvalidTransitionError):
                await services.lifecycle.update_stage(session, actor, scope, StageStatus.done)
            await session.rollback()

        async with session_factory() as session:
            assert (await get_stage(session, stages[0].id)).status == StageStatus.not_started

    @pytest.mark.asyncio
    async def test_task_changes_move_last_update_not_status(
        self,
        session_factory: SessionFactory,
        services: Services,
        actor: ActorContext,
        stages: list[Stage],
    ) -> None:
        stage_id = stages[0].id
        before = stages[0].last_update
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stage_id)
            task = await services.lifecycle.create_task(
                session, actor, scope, "Smoke test", owner="bob", required=False
            )

        async with session_factory() as session, session.begin():
            task, scope = await load_task_for(session, actor, task.id)
            task = await services.lifecycle.update_task(
                session, actor, scope, task, status=TaskStatus.doing, evidence_url="https://ci/1"
            )

        assert task.status == TaskStatus.doing
        assert task.evidence_url == "https://ci/1"
        async with session_factory() as session:
            stage = await get_stage(session, stage_id)
            entries = await services.activity.query(session, actor, stage_id=stage_id)
        assert stage.status == StageStatus.not_started
        assert stage.last_update >= before
        updated = [entry for entry in entries if entry.action == "task.updated"]
        assert updated[0].meta["from"] == "todo"
        assert updated[0].meta["to"] == "doing"
        assert updated[0].meta["fields"] == ["evidence_url", "status"]

    @pytest.mark.asyncio
    async def test_delete_task(
        self,
        session_factory: SessionFactory,
        services: Services,
        actor: ActorContext,
        stages: list[Stage],
    ) -> None:
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stages[0].id)
            task = await services.lifecycle.create_task(session, actor, scope, "Throwaway")

        async with session_factory() as session, session.begin():
            task, scope = await load_task_for(session, actor, task.id)
            await services.lifecycle.delete_task(session, actor, scope, task)

        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await load_task_for(session, actor, task.id)

    @pytest.mark.asyncio
    async def test_same_environment_twice_in_release_conflicts(
        self,
        session_factory: SessionFactory,
        services: Services,
        actor: ActorContext,
        release_scope: ResourceScope,
    ) -> None:
        async with session_factory() as session:
            scope = await load_release_for(session, actor, release_scope.release_id)
            with pytest.raises(ConflictError):
                await services.provisioner.add_environment_to_release(
                    session, actor, scope, "Staging"
                )
            await session.rollback()

    @pytest.mark.asyncio
    async def test_delete_stage(
        self,
        session_factory: SessionFactory,
        services: Services,
        actor: ActorContext,
        release_scope: ResourceScope,
        stages: list[Stage],
    ) -> None:
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stages[2].id)
            await services.lifecycle.delete_stage(session, actor, scope)

        async with session_factory() as session:
            scope = await load_release_for(session, actor, release_scope.release_id)
            summary = (await services.aggregator.summarize(session, [scope.release]))[0]
            entries = await services.activity.query(
                session, actor, release_id=release_scope.release_id
            )
        assert summary.stage_count == 2
        deleted = [entry for entry in entries if entry.action == "stage.deleted"]
        assert deleted[0].stage_id is None
        assert deleted[0].meta["environment_name"] == "Production"


class TestActivity:
    """Activity recording and feed filters."""

    @pytest.mark.asyncio
    async def test_feed_filters(
        self,
        session_factory: SessionFactory,
        services: Services,
        actor: ActorContext,
        release_scope: ResourceScope,
        stages: list[Stage],
    ) -> None:
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stages[1].id)
            await services.lifecycle.update_stage(session, actor, scope, StageStatus.in_progress)

        async with session_factory() as session:
            by_stage = await services.activity.query(session, actor, stage_id=stages[1].id)
            by_release = await services.activity.query(
                session, actor, release_id=release_scope.release_id
            )
            by_workspace = await services.activity.query(
                session, actor, workspace_id=release_scope.workspace_id
            )

        assert [entry.action for entry in by_stage] == ["stage.updated"]
        assert by_stage[0].actor == "alice"
        assert by_stage[0].meta == {"from": "not_started", "to": "in_progress"}
        assert {"release.created", "stage.updated"} <= {entry.action for entry in by_release}
        assert {"team.created", "release.created", "stage.updated"} <= {
            entry.action for entry in by_workspace
        }
        assert all(entry.workspace_id == release_scope.workspace_id for entry in by_workspace)

    @pytest.mark.asyncio
    async def test_feed_is_bounded(
        self,
        session_factory: SessionFactory,
        actor: ActorContext,
        release_scope: ResourceScope,
        stages: list[Stage],
    ) -> None:
        small = build_services(
            ShipyardConfig(lifecycle=LifecycleConfig(activity_feed_limit=2))
        )
        async with session_factory() as session, session.begin():
            scope = await load_stage_for(session, actor, stages[0].id)
            for title in ("a", "b", "c"):
                await small.lifecycle.create_task(session, actor, scope, title)

        async with session_factory() as session:
            entries = await small.activity.query(
                session, actor, release_id=release_scope.release_id
            )
        assert len(entries) == 2

    @pytest.mark.asyncio
    async def test_query_requires_a_filter(
        self, db_session: AsyncSession, services: Services, actor: ActorContext
    ) -> None:
        with pytest.raises(FieldValidationError):
            await services.activity.query(db_session, actor)

    @pytest.mark.asyncio
    async def test_workspace_feed_forbidden_to_outsiders(
        self,
        db_session: AsyncSession,
        services: Services,
        release_scope: ResourceScope,
    ) -> None:
        with pytest.raises(ForbiddenError):
            await services.activity.query(
                db_session, ActorContext("mallory"), workspace_id=release_scope.workspace_id
            )


class TestAccess:
    """Team membership and team-scoped contexts."""

    @pytest.mark.asyncio
    async def test_non_member_is_forbidden(
        self,
        db_session: AsyncSession,
        release_scope: ResourceScope,
        stages: list[Stage],
    ) -> None:
        outsider = ActorContext("mallory")
        with pytest.raises(ForbiddenError):
            await load_team_for(db_session, outsider, release_scope.team_id)
        with pytest.raises(ForbiddenError):
            await load_stage_for(db_session, outsider, stages[0].id)

    @pytest.mark.asyncio
    async def test_team_scope_mismatch_is_forbidden(
        self,
        db_session: AsyncSession,
        release_scope: ResourceScope,
    ) -> None:
        scoped = ActorContext("alice", team_id=uuid4())
        with pytest.raises(ForbiddenError):
            await load_release_for(db_session, scoped, release_scope.release_id)

    @pytest.mark.asyncio
    async def test_matching_team_scope_allowed(
        self,
        db_session: AsyncSession,
        release_scope: ResourceScope,
    ) -> None:
        scoped = ActorContext("alice", team_id=release_scope.team_id)
        scope = await load_release_for(db_session, scoped, release_scope.release_id)
        assert scope.release_id == release_scope.release_id

    @pytest.mark.asyncio
    async def test_missing_entities_not_found(
        self, db_session: AsyncSession, actor: ActorContext, team: object
    ) -> None:
        with pytest.raises(NotFoundError):
            await load_stage_for(db_session, actor, uuid4())
        with pytest.raises(NotFoundError):
            await load_blocker_for(db_session, actor, uuid4())
