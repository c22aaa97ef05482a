"""Diagram layout query functions for Shipyard.

Both layout tables hold at most one row per owner. Saves are a single
``INSERT ... ON CONFLICT DO UPDATE`` so concurrent writers never create a
second row and the last complete write wins.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.database.models.base import utcnow
from shipyard.database.models.diagram import Diagram, TaskDiagram

logger = structlog.get_logger(__name__)


def _upsert_insert(session: AsyncSession) -> Any:
    """Pick the dialect-specific insert construct supporting ON CONFLICT.

    Raises:
        NotImplementedError: For dialects without an upsert construct.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Layout upsert is not supported on {dialect}")


async def get_diagram(session: AsyncSession, release_id: UUID) -> Diagram | None:
    """Retrieve the release-level diagram, if one has been saved.

    Args:
        session: Active async database session.
        release_id: UUID of the owning release.

    Returns:
        The Diagram instance, or None.
    """
    result = await session.execute(select(Diagram).where(Diagram.release_id == release_id))
    return result.scalar_one_or_none()


async def upsert_diagram(
    session: AsyncSession,
    release_id: UUID,
    layout: dict[str, Any],
    updated_by: str | None = None,
) -> Diagram:
    """Insert or replace the layout document of a release.

    Args:
        session: Active async database session.
        release_id: UUID of the owning release.
        layout: Whole nodes/edges document to store.
        updated_by: Actor saving the layout.

    Returns:
        The stored Diagram instance.
    """
    insert = _upsert_insert(session)
    now = utcnow()
    stmt = insert(Diagram).values(
        release_id=release_id,
        layout=layout,
        updated_by=updated_by,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Diagram.release_id],
        set_={"layout": layout, "updated_by": updated_by, "updated_at": now},
    )
    await session.execute(stmt)

    result = await session.execute(
        select(Diagram)
        .where(Diagram.release_id == release_id)
        .execution_options(populate_existing=True)
    )
    diagram = result.scalar_one()

    logger.info(
        "diagram_saved",
        release_id=str(release_id),
        node_count=len(layout.get("nodes", [])),
        edge_count=len(layout.get("edges", [])),
    )
    return diagram


async def get_task_diagram(session: AsyncSession, stage_id: UUID) -> TaskDiagram | None:
    """Retrieve the task diagram of a stage, if one has been saved.

    Args:
        session: Active async database session.
        stage_id: UUID of the owning stage.

    Returns:
        The TaskDiagram instance, or None.
    """
    result = await session.execute(select(TaskDiagram).where(TaskDiagram.stage_id == stage_id))
    return result.scalar_one_or_none()


async def upsert_task_diagram(
    session: AsyncSession,
    stage_id: UUID,
    layout: dict[str, Any],
    updated_by: str | None = None,
) -> TaskDiagram:
    """Insert or replace the task layout document of a stage.

    Args:
        session: Active async database session.
        stage_id: UUID of the owning stage.
        layout: Whole nodes/edges document to store.
        updated_by: Actor saving the layout.

    Returns:
        The stored TaskDiagram instance.
    """
    insert = _upsert_insert(session)
    now = utcnow()
    stmt = insert(TaskDiagram).values(
        stage_id=stage_id,
        layout=layout,
        updated_by=updated_by,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[TaskDiagram.stage_id],
        set_={"layout": layout, "updated_by": updated_by, "updated_at": now},
    )
    await session.execute(stmt)

    result = await session.execute(
        select(TaskDiagram)
        .where(TaskDiagram.stage_id == stage_id)
        .execution_options(populate_existing=True)
    )
    diagram = result.scalar_one()

    logger.info(
        "task_diagram_saved",
        stage_id=str(stage_id),
        node_count=len(layout.get("nodes", [])),
        edge_count=len(layout.get("edges", [])),
    )
    return diagram
