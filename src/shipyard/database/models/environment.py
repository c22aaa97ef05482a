"""Environment model for Shipyard.

An Environment is a named deployment target within a team, such as
"Staging" or "Production". Every release gets one stage per environment
that exists when the release is created.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shipyard.database.models.base import Base, TimestampMixin


class Environment(TimestampMixin, Base):
    """A deployment target within a team.

    Attributes:
        team_id: Foreign key to the owning team (cascade on delete).
        name: Display name, unique within the team (case-insensitive).
        color: Display colour as ``#rrggbb``.
        sort_order: Position of the environment in the pipeline.
        is_default: Whether the environment was seeded at team creation.
    """

    __tablename__ = "environments"

    team_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    color: Mapped[str] = mapped_column(Text, nullable=False, default="#64748b")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


# Case-insensitive, so concurrent "staging" / "Staging" inserts cannot both commit.
Index(
    "uq_environments_team_lower_name",
    Environment.team_id,
    func.lower(Environment.name),
    unique=True,
)
