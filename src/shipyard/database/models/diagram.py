"""Diagram layout models for Shipyard.

Diagram holds the canvas layout of a release's stages and TaskDiagram the
layout of a stage's tasks. Each owner has at most one row, enforced by a
unique foreign key, and the layout is stored as one JSON document of
``{"nodes": [...], "edges": [...]}``.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from shipyard.database.models.base import Base, JSONDocument, TimestampMixin


class Diagram(TimestampMixin, Base):
    """Release-level canvas layout.

    Attributes:
        release_id: Foreign key to the release (unique, cascade on delete).
        name: Display name of the diagram.
        layout: The nodes/edges document.
        updated_by: Actor who saved the current layout.
    """

    __tablename__ = "diagrams"

    release_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("releases.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False, default="Release flow")
    layout: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(Text, nullable=True)


class TaskDiagram(TimestampMixin, Base):
    """Stage-level task canvas layout.

    Attributes:
        stage_id: Foreign key to the stage (unique, cascade on delete).
        layout: The nodes/edges document.
        updated_by: Actor who saved the current layout.
    """

    __tablename__ = "task_diagrams"

    stage_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    layout: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(Text, nullable=True)
