"""Unit tests for release status, progress and outcome derivation."""

from __future__ import annotations

from uuid import uuid4

import pytest

from shipyard.database.models.stage import StageStatus
from shipyard.lifecycle.aggregator import (
    OutcomeFilter,
    ReleaseSnapshot,
    ReleaseStatus,
    StageSnapshot,
    classify_outcome,
    compute_progress,
    compute_status,
    filter_by_outcome,
)

NS = StageStatus.not_started
IP = StageStatus.in_progress
BL = StageStatus.blocked
DN = StageStatus.done


def _snapshot(*stages: StageSnapshot) -> ReleaseSnapshot:
    return ReleaseSnapshot(release_id=uuid4(), stages=tuple(stages))


class TestComputeProgress:
    """Test percentage rounding."""

    @pytest.mark.parametrize(
        "done,total,expected",
        [
            (0, 0, 0),
            (0, 5, 0),
            (1, 1, 100),
            (1, 2, 50),
            (1, 3, 33),
            (2, 3, 67),
            (1, 8, 13),
            (5, 8, 63),
            (3, 8, 38),
            (7, 8, 88),
        ],
    )
    def test_rounds_half_up(self, done: int, total: int, expected: int) -> None:
        assert compute_progress(done, total) == expected

    def test_zero_tasks_regardless_of_stage_count(self) -> None:
        snapshot = _snapshot(StageSnapshot(DN), StageSnapshot(IP), StageSnapshot(NS))
        assert compute_progress(snapshot.done_count, snapshot.task_count) == 0


class TestComputeStatus:
    """Test the single status precedence order."""

    @pytest.mark.parametrize(
        "statuses,expected",
        [
            ([], ReleaseStatus.not_started),
            ([NS, NS, NS], ReleaseStatus.not_started),
            ([NS, IP, NS], ReleaseStatus.in_progress),
            ([DN, NS, NS], ReleaseStatus.in_progress),
            ([DN, DN, DN], ReleaseStatus.done),
            ([DN, BL, DN], ReleaseStatus.blocked),
            ([BL, NS, NS], ReleaseStatus.blocked),
            ([IP, IP, BL], ReleaseStatus.blocked),
        ],
    )
    def test_precedence(self, statuses: list[StageStatus], expected: ReleaseStatus) -> None:
        assert compute_status(statuses) == expected

    def test_blocked_dominates_regardless_of_position(self) -> None:
        for position in range(4):
            statuses = [DN, DN, DN]
            statuses.insert(position, BL)
            assert compute_status(statuses) == ReleaseStatus.blocked


class TestClassifyOutcome:
    """Test dashboard outcome buckets."""

    def test_release_without_stages_is_ongoing(self) -> None:
        assert classify_outcome(_snapshot()) == OutcomeFilter.ongoing

    def test_all_done_is_finished(self) -> None:
        assert classify_outcome(_snapshot(StageSnapshot(DN), StageSnapshot(DN))) == OutcomeFilter.finished

    def test_blocked_stage_is_failed(self) -> None:
        assert classify_outcome(_snapshot(StageSnapshot(DN), StageSnapshot(BL))) == OutcomeFilter.failed

    def test_active_blocker_on_unblocked_stage_is_failed(self) -> None:
        """A done stage kept done by configuration still counts as failed."""
        snapshot = _snapshot(StageSnapshot(DN, active_blocker_count=1), StageSnapshot(DN))
        assert classify_outcome(snapshot) == OutcomeFilter.failed

    def test_in_progress_is_ongoing(self) -> None:
        assert classify_outcome(_snapshot(StageSnapshot(IP), StageSnapshot(DN))) == OutcomeFilter.ongoing


class TestFilterByOutcome:
    """Test release list filtering."""

    def test_filters_each_bucket(self) -> None:
        finished = _snapshot(StageSnapshot(DN))
        failed = _snapshot(StageSnapshot(BL))
        ongoing = _snapshot(StageSnapshot(NS))
        snapshots = [finished, failed, ongoing]

        assert filter_by_outcome(snapshots, OutcomeFilter.all) == snapshots
        assert filter_by_outcome(snapshots, OutcomeFilter.finished) == [finished]
        assert filter_by_outcome(snapshots, OutcomeFilter.failed) == [failed]
        assert filter_by_outcome(snapshots, OutcomeFilter.ongoing) == [ongoing]

    def test_snapshot_totals(self) -> None:
        snapshot = _snapshot(
            StageSnapshot(IP, task_count=3, done_count=1, active_blocker_count=0),
            StageSnapshot(BL, task_count=5, done_count=4, active_blocker_count=2),
        )
        assert snapshot.task_count == 8
        assert snapshot.done_count == 5
        assert snapshot.active_blocker_count == 2
