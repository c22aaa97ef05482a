"""Team and team membership models for Shipyard.

A Team is the organizational scope that owns environments and releases.
TeamMember is the minimal membership record used for access checks; the
identity provider and invitation flow live outside this system.
"""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import ForeignKey, Index, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from shipyard.database.models.base import Base, TimestampMixin


class TeamRole(enum.Enum):
    """Role of an actor within a team.

    States:
        admin: May manage the team (the creator starts as admin).
        member: Regular access to the team's releases.
    """

    admin = "admin"
    member = "member"


class Team(TimestampMixin, Base):
    """An organizational scope owning environments and releases.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        workspace_id: Workspace the team belongs to.
        name: Team name, unique within the workspace.
        description: Optional free-text description.
    """

    __tablename__ = "teams"

    workspace_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


Index(
    "uq_teams_workspace_lower_name",
    Team.workspace_id,
    func.lower(Team.name),
    unique=True,
)


class TeamMember(TimestampMixin, Base):
    """Membership of one actor in one team.

    Attributes:
        team_id: Foreign key to the team (cascade on delete).
        actor_id: Identity supplied by the upstream identity layer.
        role: Member role within the team.
    """

    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "actor_id", name="uq_team_members_team_actor"),)

    team_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_id: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[TeamRole] = mapped_column(default=TeamRole.member, nullable=False)
