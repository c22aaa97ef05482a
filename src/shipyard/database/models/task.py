"""Task model for Shipyard.

Defines the Task table and TaskStatus enum for the checklist items of a
stage. Required tasks gate the stage's approval.
"""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from shipyard.database.models.base import Base, TimestampMixin


class TaskStatus(enum.Enum):
    """Status of a checklist task.

    States:
        todo: Not started.
        doing: In progress.
        done: Completed.
        na: Not applicable to this release; ignored by the approval gate.
    """

    todo = "todo"
    doing = "doing"
    done = "done"
    na = "na"


class Task(TimestampMixin, Base):
    """A unit of work within a stage.

    Attributes:
        stage_id: Foreign key to the owning stage (cascade on delete).
        title: Short task description.
        details: Optional longer description.
        owner: Free-text owner name.
        required: Whether the task must be done before approval.
        status: Current task status.
        evidence_url: Optional link proving completion.
    """

    __tablename__ = "tasks"

    stage_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner: Mapped[str | None] = mapped_column(Text, nullable=True)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[TaskStatus] = mapped_column(default=TaskStatus.todo, nullable=False)
    evidence_url: Mapped[str | None] = mapped_column(Text, nullable=True)
