"""Stage model for Shipyard.

Defines the Stage table and StageStatus enum. A stage pairs one release
with one environment and carries that environment's pipeline state for the
release. Status changes are enforced by
``shipyard.lifecycle.state_machine``; nothing else should assign
``status`` directly.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shipyard.database.models.base import Base, TimestampMixin, utcnow
from shipyard.database.models.environment import Environment


class StageStatus(enum.Enum):
    """Pipeline state of a stage.

    States:
        not_started: Initial state, no work recorded yet.
        in_progress: Work under way.
        blocked: At least one active blocker, or manually blocked.
        done: Approved; reachable only through the approval gate.
    """

    not_started = "not_started"
    in_progress = "in_progress"
    blocked = "blocked"
    done = "done"


class Stage(TimestampMixin, Base):
    """One environment within one release's pipeline.

    Attributes:
        release_id: Foreign key to the release (cascade on delete).
        environment_id: Foreign key to the environment (cascade on delete).
        status: Current pipeline state.
        approver: Actor who approved the stage, once done.
        approval_note: Optional note recorded with the approval.
        started_at: First time the stage entered in_progress.
        ended_at: Time of approval.
        last_update: Time of the most recent mutation of the stage or its
                     tasks and blockers.
        environment: The environment row, loaded eagerly.
    """

    __tablename__ = "stages"
    __table_args__ = (
        UniqueConstraint("release_id", "environment_id", name="uq_stages_release_environment"),
    )

    release_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("releases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    environment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("environments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[StageStatus] = mapped_column(
        default=StageStatus.not_started,
        nullable=False,
    )
    approver: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_update: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    environment: Mapped[Environment] = relationship(lazy="joined")

    @property
    def environment_name(self) -> str:
        return self.environment.name

    @property
    def environment_color(self) -> str:
        return self.environment.color

    @property
    def environment_order(self) -> int:
        return self.environment.sort_order
