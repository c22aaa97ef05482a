"""Release lifecycle services for Shipyard.

This package holds the stage state machine and approval gate, the
read-time release aggregator, release and team provisioning, and the
activity logger every mutation reports to.
"""

from shipyard.lifecycle.activity import ActivityLogger
from shipyard.lifecycle.aggregator import (
    OutcomeFilter,
    ReleaseAggregator,
    ReleaseSnapshot,
    ReleaseStatus,
    ReleaseSummary,
    StageSnapshot,
    classify_outcome,
    compute_progress,
    compute_status,
    filter_by_outcome,
)
from shipyard.lifecycle.provisioning import ReleaseProvisioner
from shipyard.lifecycle.state_machine import (
    VALID_TRANSITIONS,
    StageLifecycleEngine,
    validate_transition,
)

__all__ = [
    "ActivityLogger",
    "OutcomeFilter",
    "ReleaseAggregator",
    "ReleaseSnapshot",
    "ReleaseStatus",
    "ReleaseSummary",
    "StageSnapshot",
    "classify_outcome",
    "compute_progress",
    "compute_status",
    "filter_by_outcome",
    "ReleaseProvisioner",
    "VALID_TRANSITIONS",
    "StageLifecycleEngine",
    "validate_transition",
]
