"""Unit tests for the stage state machine and approval gate.

Tests cover:
- Direct status transition rules
- Approval gate over required tasks
- Blocker-driven status changes
- Timestamp and activity bookkeeping

Database access is mocked; integration tests exercise the same paths
against SQLite.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from shipyard.access import ActorContext, ResourceScope
from shipyard.database.models.blocker import Blocker, BlockerSeverity
from shipyard.database.models.stage import Stage, StageStatus
from shipyard.database.models.task import Task, TaskStatus
from shipyard.errors import ApprovalRejectedError, InvalidTransitionError
from shipyard.lifecycle.state_machine import (
    VALID_TRANSITIONS,
    StageLifecycleEngine,
    incomplete_required_tasks,
    validate_transition,
)


@pytest.fixture
def session() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def activity() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def engine(activity: AsyncMock) -> StageLifecycleEngine:
    return StageLifecycleEngine(activity)


@pytest.fixture
def ctx() -> ActorContext:
    return ActorContext(actor_id="alice")


def _stage(status: StageStatus) -> Stage:
    return Stage(id=uuid.uuid4(), release_id=uuid.uuid4(), status=status)


def _scope(stage: Stage) -> ResourceScope:
    return ResourceScope(team=MagicMock(), release=MagicMock(), stage=stage)


def _task(required: bool, status: TaskStatus) -> Task:
    return Task(id=uuid.uuid4(), title=f"task-{status.value}", required=required, status=status)


def _blocker(active: bool = True) -> Blocker:
    return Blocker(
        id=uuid.uuid4(),
        reason="Flaky migration",
        severity=BlockerSeverity.P1,
        active=active,
    )


class TestValidTransitions:
    """Test the VALID_TRANSITIONS mapping and validation."""

    def test_every_status_has_an_entry(self) -> None:
        assert set(VALID_TRANSITIONS) == set(StageStatus)

    @pytest.mark.parametrize(
        "current,target,expected",
        [
            (StageStatus.not_started, StageStatus.in_progress, True),
            (StageStatus.not_started, StageStatus.blocked, True),
            (StageStatus.in_progress, StageStatus.blocked, True),
            (StageStatus.blocked, StageStatus.in_progress, True),
            (StageStatus.not_started, StageStatus.done, False),
            (StageStatus.in_progress, StageStatus.done, False),
            (StageStatus.blocked, StageStatus.done, False),
            (StageStatus.in_progress, StageStatus.not_started, False),
            (StageStatus.done, StageStatus.in_progress, False),
            (StageStatus.done, StageStatus.blocked, False),
        ],
    )
    def test_validate_transition(
        self, current: StageStatus, target: StageStatus, expected: bool
    ) -> None:
        assert validate_transition(current, target) is expected

    def test_done_only_reachable_through_approval(self) -> None:
        assert all(StageStatus.done not in targets for targets in VALID_TRANSITIONS.values())


class TestIncompleteRequiredTasks:
    """Test which tasks block approval."""

    def test_required_open_tasks_block(self) -> None:
        todo = _task(True, TaskStatus.todo)
        doing = _task(True, TaskStatus.doing)
        assert incomplete_required_tasks([todo, doing]) == [todo, doing]

    def test_optional_and_done_tasks_ignored(self) -> None:
        tasks = [
            _task(True, TaskStatus.done),
            _task(False, TaskStatus.todo),
            _task(False, TaskStatus.na),
        ]
        assert incomplete_required_tasks(tasks) == []

    def test_required_na_task_blocks(self) -> None:
        na = _task(True, TaskStatus.na)
        assert incomplete_required_tasks([_task(True, TaskStatus.done), na]) == [na]

    def test_no_tasks(self) -> None:
        assert incomplete_required_tasks([]) == []


class TestUpdateStage:
    """Test direct status updates."""

    @pytest.mark.asyncio
    async def test_start_sets_started_at_and_logs_activity(
        self,
        engine: StageLifecycleEngine,
        session: AsyncMock,
        activity: AsyncMock,
        ctx: ActorContext,
    ) -> None:
        stage = _stage(StageStatus.not_started)
        scope = _scope(stage)

        result = await engine.update_stage(session, ctx, scope, StageStatus.in_progress)

        assert result.status == StageStatus.in_progress
        assert result.started_at is not None
        assert result.last_update is not None
        activity.append.assert_awaited_once()
        args = activity.append.await_args.args
        assert args[2] == "stage.updated"
        assert args[4] == {"from": "not_started", "to": "in_progress"}

    @pytest.mark.asyncio
    async def test_same_status_is_noop(
        self,
        engine: StageLifecycleEngine,
        session: AsyncMock,
        activity: AsyncMock,
        ctx: ActorContext,
    ) -> None:
        stage = _stage(StageStatus.blocked)
        await engine.update_stage(session, ctx, _scope(stage), StageStatus.blocked)
        activity.append.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_direct_done_rejected(
        self,
        engine: StageLifecycleEngine,
        session: AsyncMock,
        ctx: ActorContext,
    ) -> None:
        stage = _stage(StageStatus.in_progress)
        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.update_stage(session, ctx, _scope(stage), StageStatus.done)

        assert exc_info.value.current == "in_progress"
        assert exc_info.value.target == "done"
        assert stage.status == StageStatus.in_progress


class TestApprove:
    """Test the approval gate."""

    @pytest.mark.asyncio
    async def test_rejects_with_incomplete_required_tasks(
        self,
        engine: StageLifecycleEngine,
        session: AsyncMock,
        activity: AsyncMock,
        ctx: ActorContext,
    ) -> None:
        stage = _stage(StageStatus.in_progress)
        open_task = _task(True, TaskStatus.doing)
        tasks = [open_task, _task(True, TaskStatus.done), _task(False, TaskStatus.todo)]

        with patch(
            "shipyard.lifecycle.state_machine.task_queries.list_tasks",
            new=AsyncMock(return_value=tasks),
        ):
            with pytest.raises(ApprovalRejectedError) as exc_info:
                await engine.approve(session, ctx, _scope(stage))

        assert exc_info.value.incomplete_tasks == [
            {"id": str(open_task.id), "title": open_task.title, "status": "doing"}
        ]
        assert stage.status == StageStatus.in_progress
        assert stage.approver is None
        activity.append.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_required_task_marked_na(
        self,
        engine: StageLifecycleEngine,
        session: AsyncMock,
        ctx: ActorContext,
    ) -> None:
        stage = _stage(StageStatus.in_progress)
        na_task = _task(True, TaskStatus.na)

        with patch(
            "shipyard.lifecycle.state_machine.task_queries.list_tasks",
            new=AsyncMock(return_value=[_task(True, TaskStatus.done), na_task]),
        ):
            with pytest.raises(ApprovalRejectedError) as exc_info:
                await engine.approve(session, ctx, _scope(stage))

        assert [t["status"] for t in exc_info.value.incomplete_tasks] == ["na"]
        assert stage.status == StageStatus.in_progress

    @pytest.mark.asyncio
    async def test_approves_when_required_tasks_done(
        self,
        engine: StageLifecycleEngine,
        session: AsyncMock,
        activity: AsyncMock,
        ctx: ActorContext,
    ) -> None:
        stage = _stage(StageStatus.in_progress)
        tasks = [_task(True, TaskStatus.done), _task(False, TaskStatus.todo)]

        with patch(
            "shipyard.lifecycle.state_machine.task_queries.list_tasks",
            new=AsyncMock(return_value=tasks),
        ):
            result = await engine.approve(session, ctx, _scope(stage), note="Looks good")

        assert result.status == StageStatus.done
        assert result.approver == "alice"
        assert result.approval_note == "Looks good"
        assert result.ended_at is not None
        assert activity.append.await_args.args[2] == "stage.approved"

    @pytest.mark.asyncio
    async def test_approves_stage_without_tasks_from_not_started(
        self,
        engine: StageLifecycleEngine,
        session: AsyncMock,
        ctx: ActorContext,
    ) -> None:
        stage = _stage(StageStatus.not_started)
        with patch(
            "shipyard.lifecycle.state_machine.task_queries.list_tasks",
            new=AsyncMock(return_value=[]),
        ):
            result = await engine.approve(session, ctx, _scope(stage))
        assert result.status == StageStatus.done


class TestBlockerTransitions:
    """Test blocker-driven status changes."""

    @pytest.mark.asyncio
    async def test_blocker_forces_blocked(
        self, engine: StageLifecycleEngine, session: AsyncMock
    ) -> None:
        stage = _stage(StageStatus.in_progress)
        previous = await engine.record_blocker_created(session, _blocker(), stage)

        assert previous == StageStatus.in_progress
        assert stage.status == StageStatus.blocked

    @pytest.mark.asyncio
    async def test_blocker_reopens_done_stage_by_default(
        self, engine: StageLifecycleEngine, session: AsyncMock
    ) -> None:
        stage = _stage(StageStatus.done)
        await engine.record_blocker_created(session, _blocker(), stage)
        assert stage.status == StageStatus.blocked

    @pytest.mark.asyncio
    async def test_done_stage_kept_when_reopen_disabled(
        self, activity: AsyncMock, session: AsyncMock
    ) -> None:
        engine = StageLifecycleEngine(activity, reopen_done_stages=False)
        stage = _stage(StageStatus.done)

        previous = await engine.record_blocker_created(session, _blocker(), stage)

        assert previous is None
        assert stage.status == StageStatus.done

    @pytest.mark.asyncio
    async def test_resolving_last_blocker_unblocks(
        self, engine: StageLifecycleEngine, session: AsyncMock
    ) -> None:
        stage = _stage(StageStatus.blocked)
        blocker = _blocker()

        with patch(
            "shipyard.lifecycle.state_machine.blocker_queries.count_active_blockers",
            new=AsyncMock(return_value=0),
        ):
            previous = await engine.record_blocker_resolved(session, blocker, stage)

        assert previous == StageStatus.blocked
        assert stage.status == StageStatus.in_progress
        assert blocker.active is False
        assert blocker.resolved_at is not None

    @pytest.mark.asyncio
    async def test_resolving_one_of_two_blockers_stays_blocked(
        self, engine: StageLifecycleEngine, session: AsyncMock
    ) -> None:
        stage = _stage(StageStatus.blocked)

        with patch(
            "shipyard.lifecycle.state_machine.blocker_queries.count_active_blockers",
            new=AsyncMock(return_value=1),
        ):
            previous = await engine.record_blocker_resolved(session, _blocker(), stage)

        assert previous is None
        assert stage.status == StageStatus.blocked
