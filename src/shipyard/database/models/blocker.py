"""Blocker model for Shipyard.

A blocker is an impediment attached to a stage. While any blocker on a
stage is active the stage is held in the ``blocked`` state.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from shipyard.database.models.base import Base, TimestampMixin


class BlockerSeverity(enum.Enum):
    """Severity ranking, P1 being the most critical."""

    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class Blocker(TimestampMixin, Base):
    """An active or resolved impediment on a stage.

    Attributes:
        stage_id: Foreign key to the owning stage (cascade on delete).
        severity: Severity ranking.
        reason: Description of the impediment.
        owner: Free-text owner responsible for resolving it.
        eta: Optional expected resolution time.
        active: False once resolved.
        resolved_at: Time the blocker was last resolved.
    """

    __tablename__ = "blockers"

    stage_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    severity: Mapped[BlockerSeverity] = mapped_column(
        default=BlockerSeverity.P2,
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    owner: Mapped[str | None] = mapped_column(Text, nullable=True)
    eta: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
