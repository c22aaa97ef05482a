"""SQLAlchemy ORM models for Shipyard.

This module defines the database schema: teams and their members,
environments, releases, stages, tasks, blockers, diagram layouts and the
activity log.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from shipyard.database.models.activity import ActivityLogEntry
from shipyard.database.models.base import Base, JSONDocument, TimestampMixin, utcnow
from shipyard.database.models.blocker import Blocker, BlockerSeverity
from shipyard.database.models.diagram import Diagram, TaskDiagram
from shipyard.database.models.environment import Environment
from shipyard.database.models.release import Release
from shipyard.database.models.stage import Stage, StageStatus
from shipyard.database.models.task import Task, TaskStatus
from shipyard.database.models.team import Team, TeamMember, TeamRole

__all__ = [
    "Base",
    "TimestampMixin",
    "JSONDocument",
    "utcnow",
    "Team",
    "TeamMember",
    "TeamRole",
    "Environment",
    "Release",
    "Stage",
    "StageStatus",
    "Task",
    "TaskStatus",
    "Blocker",
    "BlockerSeverity",
    "Diagram",
    "TaskDiagram",
    "ActivityLogEntry",
]
