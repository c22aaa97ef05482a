"""Diagram layout store for Shipyard.

Persists one layout document per owner: a release owns the stage canvas,
a stage owns its task canvas. Reads of an owner that never saved a layout
return an empty document rather than an error; the caller places
entity-backed nodes that lack a saved position.

Saves replace the whole document (last complete write wins). The store
never adds or drops nodes on its own, so a document saved and read back
is identical, including nodes for entities that no longer exist.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.access import ActorContext, ResourceScope, load_release_for, load_stage_for
from shipyard.database.queries import diagram as diagram_queries
from shipyard.database.queries.stage import list_stages
from shipyard.database.queries.task import list_tasks
from shipyard.layout.schema import (
    EntityBackedNode,
    FreeNode,
    LayoutDocument,
    parse_layout,
    resolve_nodes,
)
from shipyard.lifecycle.activity import ActivityLogger

logger = structlog.get_logger(__name__)


class LayoutOwner(str, enum.Enum):
    """Kind of entity owning a layout document."""

    release = "release"
    stage = "stage"


@dataclass
class StoredLayout:
    """A layout document with its read-time node resolution.

    Attributes:
        owner: Owner kind.
        owner_id: Release or stage id.
        layout: The stored (or empty) document.
        nodes: Each node resolved as entity-backed or free.
        saved: False when the owner has never saved a layout.
        updated_at: Time of the last save.
        updated_by: Actor of the last save.
    """

    owner: LayoutOwner
    owner_id: UUID
    layout: LayoutDocument
    nodes: list[EntityBackedNode | FreeNode] = field(default_factory=list)
    saved: bool = False
    updated_at: datetime | None = None
    updated_by: str | None = None


class DiagramLayoutStore:
    """Reads and replaces layout documents for releases and stages."""

    def __init__(self, activity: ActivityLogger) -> None:
        self.activity = activity

    async def _scope(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        owner: LayoutOwner,
        owner_id: UUID,
    ) -> ResourceScope:
        if owner == LayoutOwner.release:
            return await load_release_for(session, ctx, owner_id)
        return await load_stage_for(session, ctx, owner_id)

    async def _live_ids(
        self,
        session: AsyncSession,
        owner: LayoutOwner,
        owner_id: UUID,
    ) -> set[str]:
        if owner == LayoutOwner.release:
            return {str(stage.id) for stage in await list_stages(session, [owner_id])}
        return {str(task.id) for task in await list_tasks(session, [owner_id])}

    async def _resolved(
        self,
        session: AsyncSession,
        owner: LayoutOwner,
        owner_id: UUID,
        layout: LayoutDocument,
        row: Any,
    ) -> StoredLayout:
        live_ids = await self._live_ids(session, owner, owner_id)
        entity_kind = "stage" if owner == LayoutOwner.release else "task"
        return StoredLayout(
            owner=owner,
            owner_id=owner_id,
            layout=layout,
            nodes=resolve_nodes(layout, live_ids, entity_kind),
            saved=row is not None,
            updated_at=row.updated_at if row is not None else None,
            updated_by=row.updated_by if row is not None else None,
        )

    async def get_layout(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        owner: LayoutOwner,
        owner_id: UUID,
    ) -> StoredLayout:
        """Return the owner's layout, or an empty one if none was saved.

        Args:
            session: Active async database session.
            ctx: Caller identity.
            owner: Owner kind.
            owner_id: Release or stage id.

        Returns:
            The stored layout with resolved nodes.

        Raises:
            NotFoundError: If the owner itself does not exist.
            ForbiddenError: If the actor lacks access to the owner.
        """
        await self._scope(session, ctx, owner, owner_id)
        if owner == LayoutOwner.release:
            row = await diagram_queries.get_diagram(session, owner_id)
        else:
            row = await diagram_queries.get_task_diagram(session, owner_id)

        layout = LayoutDocument.model_validate(row.layout) if row is not None else LayoutDocument.empty()
        return await self._resolved(session, owner, owner_id, layout, row)

    async def save_layout(
        self,
        session: AsyncSession,
        ctx: ActorContext,
        owner: LayoutOwner,
        owner_id: UUID,
        layout: LayoutDocument | dict[str, Any],
    ) -> StoredLayout:
        """Replace the owner's layout document.

        Args:
            session: Active async database session.
            ctx: Saving actor.
            owner: Owner kind.
            owner_id: Release or stage id.
            layout: The whole new document.

        Returns:
            The stored layout with resolved nodes.

        Raises:
            FieldValidationError: If the document is malformed.
            NotFoundError: If the owner does not exist.
            ForbiddenError: If the actor lacks access to the owner.
        """
        if not isinstance(layout, LayoutDocument):
            layout = parse_layout(layout)
        scope = await self._scope(session, ctx, owner, owner_id)

        document = layout.to_document()
        if owner == LayoutOwner.release:
            row = await diagram_queries.upsert_diagram(session, owner_id, document, ctx.actor_id)
            action = "diagram.saved"
        else:
            row = await diagram_queries.upsert_task_diagram(session, owner_id, document, ctx.actor_id)
            action = "task_diagram.saved"

        await self.activity.append(
            session,
            ctx,
            action,
            scope,
            {"node_count": len(layout.nodes), "edge_count": len(layout.edges)},
        )
        logger.info(
            "layout_saved",
            owner=owner.value,
            owner_id=str(owner_id),
            actor_id=ctx.actor_id,
        )
        return await self._resolved(session, owner, owner_id, layout, row)
