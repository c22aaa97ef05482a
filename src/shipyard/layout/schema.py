"""Pydantic schemas for diagram layout documents.

A layout document is ``{"nodes": [...], "edges": [...]}`` as produced by
the canvas editor. Keys this module does not know about are kept so that
a save followed by a load returns exactly what the editor sent.

Whether a node represents a live stage/task or is a free annotation box is
not stored: it is decided at read time by looking the node id up among the
current entity ids (see resolve_nodes).

Example:
    >>> layout = parse_layout({
    ...     "nodes": [{"id": "n1", "position": {"x": 10.5, "y": 20}, "data": {}}],
    ...     "edges": [],
    ... })
    >>> layout.to_document()["nodes"][0]["position"]
    {'x': 10.5, 'y': 20.0}
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, FiniteFloat, ValidationError, model_validator

from shipyard.errors import FieldValidationError


class Position(BaseModel):
    """Canvas coordinates of a node, stored exactly as given."""

    model_config = ConfigDict(extra="allow")

    x: FiniteFloat
    y: FiniteFloat


class LayoutNode(BaseModel):
    """One positioned canvas node."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    type: str | None = None
    position: Position
    data: dict[str, Any] = Field(default_factory=dict)


class LayoutEdge(BaseModel):
    """A directed connection between two nodes."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    source: str
    target: str


class LayoutDocument(BaseModel):
    """A whole layout: node ids are unique and every edge joins two present nodes."""

    model_config = ConfigDict(extra="allow")

    nodes: list[LayoutNode] = Field(default_factory=list)
    edges: list[LayoutEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_references(self) -> LayoutDocument:
        node_ids: set[str] = set()
        for node in self.nodes:
            if node.id in node_ids:
                raise ValueError(f"duplicate node id: {node.id}")
            node_ids.add(node.id)
        for edge in self.edges:
            missing = [end for end in (edge.source, edge.target) if end not in node_ids]
            if missing:
                raise ValueError(f"edge {edge.id} references unknown node(s): {', '.join(missing)}")
        return self

    @classmethod
    def empty(cls) -> LayoutDocument:
        return cls(nodes=[], edges=[])

    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def to_document(self) -> dict[str, Any]:
        """Serialize for storage, keeping only what the editor supplied."""
        document = self.model_dump(mode="json", exclude_unset=True)
        document.setdefault("nodes", [])
        document.setdefault("edges", [])
        return document


def parse_layout(raw: Any) -> LayoutDocument:
    """Validate a raw layout document.

    Args:
        raw: Decoded JSON body.

    Returns:
        The validated LayoutDocument.

    Raises:
        FieldValidationError: With one message per offending location.
    """
    try:
        return LayoutDocument.model_validate(raw)
    except ValidationError as exc:
        errors = {
            ".".join(str(part) for part in error["loc"]) or "layout": error["msg"]
            for error in exc.errors()
        }
        raise FieldValidationError(errors) from exc


class EntityBackedNode(BaseModel):
    """A node whose id matches a live stage or task."""

    kind: Literal["entity"] = "entity"
    id: str
    entity_id: UUID
    entity_kind: str
    position: Position


class FreeNode(BaseModel):
    """A node with no live entity behind it, i.e. an annotation box."""

    kind: Literal["free"] = "free"
    id: str
    label: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    position: Position


ResolvedNode = Annotated[Union[EntityBackedNode, FreeNode], Field(discriminator="kind")]


def resolve_nodes(
    layout: LayoutDocument,
    live_ids: set[str],
    entity_kind: str,
) -> list[EntityBackedNode | FreeNode]:
    """Classify every node against the current entity ids.

    Args:
        layout: Stored layout document.
        live_ids: String ids of the live stages (or tasks).
        entity_kind: ``"stage"`` or ``"task"``.

    Returns:
        One resolved node per layout node, in layout order.
    """
    resolved: list[EntityBackedNode | FreeNode] = []
    for node in layout.nodes:
        if node.id in live_ids:
            resolved.append(
                EntityBackedNode(
                    id=node.id,
                    entity_id=UUID(node.id),
                    entity_kind=entity_kind,
                    position=node.position,
                )
            )
        else:
            label = node.data.get("label")
            resolved.append(
                FreeNode(
                    id=node.id,
                    label=label if isinstance(label, str) else None,
                    custom_fields={k: v for k, v in node.data.items() if k != "label"},
                    position=node.position,
                )
            )
    return resolved
