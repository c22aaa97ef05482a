"""Release status and progress derivation for Shipyard.

Nothing here is persisted: a release's status, progress and outcome are
recomputed from its stages, tasks and blockers on every read. The pure
functions take snapshots so they can be tested without a database;
ReleaseAggregator loads the snapshots in a few grouped queries.

Status precedence, applied everywhere:

    blocked > done (every stage) > in_progress (any stage in_progress
    or done) > not_started

Example:
    >>> compute_status([StageStatus.done, StageStatus.blocked, StageStatus.done])
    <ReleaseStatus.blocked: 'blocked'>
    >>> compute_progress(done=1, total=8)
    13
"""

from __future__ import annotations

import enum
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from uuid import UUID

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.access import ActorContext, load_team_for
from shipyard.database.models.blocker import Blocker
from shipyard.database.models.release import Release
from shipyard.database.models.stage import StageStatus
from shipyard.database.models.task import Task, TaskStatus
from shipyard.database.queries.release import list_releases
from shipyard.database.queries.stage import list_stages
from shipyard.database.queries.team import list_teams_for_actor

logger = structlog.get_logger(__name__)


class ReleaseStatus(str, enum.Enum):
    """Derived overall status of a release."""

    not_started = "not_started"
    in_progress = "in_progress"
    blocked = "blocked"
    done = "done"


class OutcomeFilter(str, enum.Enum):
    """Release list filters.

    States:
        all: No filtering.
        ongoing: Neither finished nor failed (includes releases with no stages).
        finished: Every stage done, at least one stage.
        failed: Any stage blocked or any active blocker.
    """

    all = "all"
    ongoing = "ongoing"
    finished = "finished"
    failed = "failed"


@dataclass(frozen=True)
class StageSnapshot:
    """Counts needed to derive release state from one stage."""

    status: StageStatus
    task_count: int = 0
    done_count: int = 0
    active_blocker_count: int = 0


@dataclass(frozen=True)
class ReleaseSnapshot:
    """All stages of one release, as read at one point in time."""

    release_id: UUID
    stages: tuple[StageSnapshot, ...] = field(default_factory=tuple)

    @property
    def task_count(self) -> int:
        return sum(stage.task_count for stage in self.stages)

    @property
    def done_count(self) -> int:
        return sum(stage.done_count for stage in self.stages)

    @property
    def active_blocker_count(self) -> int:
        return sum(stage.active_blocker_count for stage in self.stages)


def compute_progress(done: int, total: int) -> int:
    """Percentage of done tasks, rounded half up; 0 when there are no tasks.

    Args:
        done: Number of tasks with status done.
        total: Number of tasks.

    Returns:
        Integer percentage between 0 and 100.
    """
    if total <= 0:
        return 0
    return math.floor(100 * done / total + 0.5)


def compute_status(statuses: Sequence[StageStatus]) -> ReleaseStatus:
    """Derive a release's status from its stage statuses.

    Args:
        statuses: Status of every stage of the release.

    Returns:
        The derived ReleaseStatus. A release without stages is not_started.
    """
    if any(status == StageStatus.blocked for status in statuses):
        return ReleaseStatus.blocked
    if statuses and all(status == StageStatus.done for status in statuses):
        return ReleaseStatus.done
    if any(status in (StageStatus.in_progress, StageStatus.done) for status in statuses):
        return ReleaseStatus.in_progress
    return ReleaseStatus.not_started


def classify_outcome(snapshot: ReleaseSnapshot) -> OutcomeFilter:
    """Place a release in exactly one of ongoing, finished or failed."""
    statuses = [stage.status for stage in snapshot.stages]
    if StageStatus.blocked in statuses or snapshot.active_blocker_count > 0:
        return OutcomeFilter.failed
    if statuses and all(status == StageStatus.done for status in statuses):
        return OutcomeFilter.finished
    return OutcomeFilter.ongoing


def filter_by_outcome(
    snapshots: Iterable[ReleaseSnapshot],
    outcome: OutcomeFilter,
) -> list[ReleaseSnapshot]:
    """Keep the snapshots whose outcome matches the filter."""
    if outcome == OutcomeFilter.all:
        return list(snapshots)
    return [snapshot for snapshot in snapshots if classify_outcome(snapshot) == outcome]


@dataclass
class ReleaseSummary:
    """A release with its derived state, as shown in lists and dashboards."""

    release: Release
    status: ReleaseStatus
    progress: int
    outcome: OutcomeFilter
    stage_count: int
    task_count: int
    done_task_count: int
    active_blocker_count: int

    @classmethod
    def from_snapshot(cls, release: Release, snapshot: ReleaseSnapshot) -> ReleaseSummary:
        return cls(
            release=release,
            status=compute_status([stage.status for stage in snapshot.stages]),
            progress=compute_progress(snapshot.done_count, snapshot.task_count),
            outcome=classify_outcome(snapshot),
            stage_count=len(snapshot.stages),
            task_count=snapshot.task_count,
            done_task_count=snapshot.done_count,
            active_blocker_count=snapshot.active_blocker_count,
        )


class ReleaseAggregator:
    """Loads release snapshots and derives their summaries."""

    async def snapshots(
        self,
        session: AsyncSession,
        release_ids: list[UUID],
    ) -> dict[UUID, ReleaseSnapshot]:
        """Load snapshots for many releases with grouped count queries.

        Args:
            session: Active async database session.
            release_ids: Releases to snapshot.

        Returns:
            Mapping of release id to snapshot; releases without stages map
            to an empty snapshot.
        """
        stages = await list_stages(session, release_ids)
        stage_ids = [stage.id for stage in stages]

        task_counts: dict[UUID, tuple[int, int]] = {}
        blocker_counts: dict[UUID, int] = {}
        if stage_ids:
            task_stmt = (
                select(
                    Task.stage_id,
                    func.count(Task.id),
                    func.sum(case((Task.status == TaskStatus.done, 1), else_=0)),
                )
                .where(Task.stage_id.in_(stage_ids))
                .group_by(Task.stage_id)
            )
            for stage_id, total, done in (await session.execute(task_stmt)).all():
                task_counts[stage_id] = (total, done or 0)

            blocker_stmt = (
                select(Blocker.stage_id, func.count(Blocker.id))
                .where(Blocker.stage_id.in_(stage_ids), Blocker.active.is_(True))
                .group_by(Blocker.stage_id)
            )
            for stage_id, count in (await session.execute(blocker_stmt)).all():
                blocker_counts[stage_id] = count

        grouped: dict[UUID, list[StageSnapshot]] = {release_id: [] for release_id in release_ids}
        for stage in stages:
            total, done = task_counts.get(stage.id, (0, 0))
            grouped[stage.release_id].append(
                StageSnapshot(
                    status=stage.status,
                    task_count=total,
                    done_count=done,
                    active_blocker_count=blocker_counts.get(stage.id, 0),
                )
            )

        return {
            release_id: ReleaseSnapshot(release_id=release_id, stages=tuple(items))
            for release_id, items in grouped.items()
        }

    async def summarize(
        self,
        session: AsyncSession,
        releases: list[Release],
    ) -> list[ReleaseSummary]:
        """Derive summaries for already-authorized releases, keeping their order."""
        snapshots = await self.snapshots(session, [release.id for release in releases])
        return [
            ReleaseSummary.from_snapshot(release, snapshots[release.id]) for release in releases
        ]

    async def list_summaries(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        team_id: UUID | None = None,
        outcome: OutcomeFilter = OutcomeFilter.all,
    ) -> list[ReleaseSummary]:
        """List release summaries visible to the actor.

        Args:
            session: Active async database session.
            ctx: Caller identity.
            team_id: Restrict to one team (access checked); otherwise the
                context's team, or every team the actor belongs to.
            outcome: Outcome filter.

        Returns:
            Summaries, newest release first.

        Raises:
            NotFoundError: If the team does not exist.
            ForbiddenError: If the actor is not a member of the team.
        """
        team_id = team_id or ctx.team_id
        if team_id is not None:
            scope = await load_team_for(session, ctx, team_id)
            team_ids = [scope.team_id]
        else:
            team_ids = [team.id for team in await list_teams_for_actor(session, ctx.actor_id)]

        summaries = await self.summarize(session, await list_releases(session, team_ids))
        if outcome != OutcomeFilter.all:
            summaries = [summary for summary in summaries if summary.outcome == outcome]

        logger.info(
            "release_summaries_computed",
            actor_id=ctx.actor_id,
            team_count=len(team_ids),
            count=len(summaries),
            outcome=outcome.value,
        )
        return summaries
