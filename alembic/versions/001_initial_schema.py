"""Initial schema for Shipyard.

Creates the teams, team_members, environments, releases, stages, tasks,
blockers, diagrams, task_diagrams and activity_log tables. Ownership
foreign keys cascade on delete; activity rows keep their history with the
references nulled.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONDocument = sa.JSON().with_variant(JSONB(), "postgresql")
ACTIVITY_SEQ = sa.Sequence("activity_log_seq")

ENUMS = {
    "teamrole": ("admin", "member"),
    "stagestatus": ("not_started", "in_progress", "blocked", "done"),
    "taskstatus": ("todo", "doing", "done", "na"),
    "blockerseverity": ("P1", "P2", "P3"),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUMS[name], name=name, create_type=False)


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), primary_key=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)
    if bind.dialect.supports_sequences:
        ACTIVITY_SEQ.create(bind, checkfirst=True)

    op.create_table(
        "teams",
        _id(),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_teams_workspace_id", "teams", ["workspace_id"])
    op.create_index(
        "uq_teams_workspace_lower_name",
        "teams",
        ["workspace_id", sa.text("lower(name)")],
        unique=True,
    )

    op.create_table(
        "team_members",
        _id(),
        sa.Column(
            "team_id",
            sa.Uuid(),
            sa.ForeignKey("teams.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.Text(), nullable=False),
        sa.Column("role", _enum("teamrole"), nullable=False, server_default="member"),
        *_timestamps(),
        sa.UniqueConstraint("team_id", "actor_id", name="uq_team_members_team_actor"),
    )
    op.create_index("ix_team_members_team_id", "team_members", ["team_id"])

    op.create_table(
        "environments",
        _id(),
        sa.Column(
            "team_id",
            sa.Uuid(),
            sa.ForeignKey("teams.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("color", sa.Text(), nullable=False, server_default="#64748b"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_environments_team_id", "environments", ["team_id"])
    op.create_index(
        "uq_environments_team_lower_name",
        "environments",
        ["team_id", sa.text("lower(name)")],
        unique=True,
    )

    op.create_table(
        "releases",
        _id(),
        sa.Column(
            "team_id",
            sa.Uuid(),
            sa.ForeignKey("teams.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("version", sa.Text(), nullable=True),
        sa.Column("change_window", JSONDocument, nullable=True),
        sa.Column("created_by", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_releases_team_id", "releases", ["team_id"])

    op.create_table(
        "stages",
        _id(),
        sa.Column(
            "release_id",
            sa.Uuid(),
            sa.ForeignKey("releases.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "environment_id",
            sa.Uuid(),
            sa.ForeignKey("environments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", _enum("stagestatus"), nullable=False, server_default="not_started"),
        sa.Column("approver", sa.Text(), nullable=True),
        sa.Column("approval_note", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_update", sa.DateTime(timezone=True), server_default=sa.func.now()),
        *_timestamps(),
        sa.UniqueConstraint("release_id", "environment_id", name="uq_stages_release_environment"),
    )
    op.create_index("ix_stages_release_id", "stages", ["release_id"])
    op.create_index("ix_stages_environment_id", "stages", ["environment_id"])

    op.create_table(
        "tasks",
        _id(),
        sa.Column(
            "stage_id",
            sa.Uuid(),
            sa.ForeignKey("stages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("owner", sa.Text(), nullable=True),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", _enum("taskstatus"), nullable=False, server_default="todo"),
        sa.Column("evidence_url", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_tasks_stage_id", "tasks", ["stage_id"])

    op.create_table(
        "blockers",
        _id(),
        sa.Column(
            "stage_id",
            sa.Uuid(),
            sa.ForeignKey("stages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("severity", _enum("blockerseverity"), nullable=False, server_default="P2"),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("owner", sa.Text(), nullable=True),
        sa.Column("eta", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_blockers_stage_id", "blockers", ["stage_id"])

    op.create_table(
        "diagrams",
        _id(),
        sa.Column(
            "release_id",
            sa.Uuid(),
            sa.ForeignKey("releases.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("name", sa.Text(), nullable=False, server_default="Release flow"),
        sa.Column("layout", JSONDocument, nullable=False),
        sa.Column("updated_by", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "task_diagrams",
        _id(),
        sa.Column(
            "stage_id",
            sa.Uuid(),
            sa.ForeignKey("stages.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("layout", JSONDocument, nullable=False),
        sa.Column("updated_by", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "activity_log",
        _id(),
        sa.Column("workspace_id", sa.Uuid(), nullable=True),
        sa.Column(
            "team_id",
            sa.Uuid(),
            sa.ForeignKey("teams.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "release_id",
            sa.Uuid(),
            sa.ForeignKey("releases.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "stage_id",
            sa.Uuid(),
            sa.ForeignKey("stages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("actor", sa.Text(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("meta", JSONDocument, nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("seq", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_activity_log_workspace_id", "activity_log", ["workspace_id"])
    op.create_index("ix_activity_log_release_id", "activity_log", ["release_id"])
    op.create_index("ix_activity_log_stage_id", "activity_log", ["stage_id"])
    op.create_index("ix_activity_log_at", "activity_log", ["at"])
    op.create_index("ix_activity_log_seq", "activity_log", ["seq"], unique=True)


def downgrade() -> None:
    op.drop_table("activity_log")
    op.drop_table("task_diagrams")
    op.drop_table("diagrams")
    op.drop_table("blockers")
    op.drop_table("tasks")
    op.drop_table("stages")
    op.drop_table("releases")
    op.drop_table("environments")
    op.drop_table("team_members")
    op.drop_table("teams")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(bind, checkfirst=True)
    if bind.dialect.supports_sequences:
        ACTIVITY_SEQ.drop(bind, checkfirst=True)
