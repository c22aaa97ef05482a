"""Release model for Shipyard.

A Release is a named deployment effort owned by exactly one team. Its
stages, tasks, blockers and diagram are removed with it through cascading
foreign keys.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from shipyard.database.models.base import Base, JSONDocument, TimestampMixin


class Release(TimestampMixin, Base):
    """A deployment effort moving through a team's environments.

    Attributes:
        team_id: Foreign key to the owning team (cascade on delete).
        name: Release name.
        version: Optional semantic version string.
        change_window: Optional ``{"start": iso, "end": iso}`` window.
        created_by: Actor id of the creator.
    """

    __tablename__ = "releases"

    team_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_window: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    created_by: Mapped[str] = mapped_column(Text, nullable=False)
