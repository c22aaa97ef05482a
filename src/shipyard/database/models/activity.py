"""Activity log model for Shipyard.

Append-only audit trail. Rows are never updated or deleted by the
application; deleting a release or stage nulls the reference so the
history of deleted entities survives.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, ForeignKey, Sequence, Text, Uuid, event, func, select
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Mapped, Mapper, mapped_column

from shipyard.database.models.base import Base, JSONDocument, utcnow

activity_seq = Sequence("activity_log_seq")


class ActivityLogEntry(Base):
    """One recorded mutation.

    Attributes:
        id: UUID primary key.
        workspace_id: Workspace of the affected resource.
        team_id: Team of the affected resource.
        release_id: Affected release, nulled if the release is deleted.
        stage_id: Affected stage, nulled if the stage is deleted.
        actor: Actor who performed the mutation.
        action: Dotted event name, e.g. ``stage.approved``.
        meta: Structured event payload.
        at: Time of the mutation.
        seq: Insertion order, used to break ties between entries with the
            same timestamp.
    """

    __tablename__ = "activity_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    team_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
    )
    release_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("releases.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    stage_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("stages.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    actor: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        index=True,
    )
    seq: Mapped[int] = mapped_column(
        BigInteger,
        activity_seq,
        nullable=False,
        unique=True,
        index=True,
    )


@event.listens_for(ActivityLogEntry, "before_insert")
def _assign_seq(mapper: Mapper[Any], connection: Connection, target: ActivityLogEntry) -> None:
    """Number entries on backends without sequences.

    Postgres draws ``seq`` from activity_log_seq. SQLite serializes writers,
    so the next value is one past the current maximum. Entries flushed
    together are numbered before any of them is inserted, hence the last
    value handed out on this connection is tracked as well.
    """
    if target.seq is not None or connection.dialect.supports_sequences:
        return
    stmt = select(func.coalesce(func.max(ActivityLogEntry.seq), 0) + 1)
    seq = max(connection.execute(stmt).scalar_one(), connection.info.get("activity_seq", 0) + 1)
    connection.info["activity_seq"] = seq
    target.seq = seq
