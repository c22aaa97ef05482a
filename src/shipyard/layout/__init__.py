"""Diagram layout persistence for Shipyard.

Layouts are whole documents of positioned nodes and directed edges, one
per release (stage canvas) and one per stage (task canvas). The store
replaces documents wholesale and never merges; merging concurrent edits is
the client's job (see ``shipyard.client.layout_session``).
"""

from shipyard.layout.schema import (
    EntityBackedNode,
    FreeNode,
    LayoutDocument,
    LayoutEdge,
    LayoutNode,
    Position,
    parse_layout,
    resolve_nodes,
)
from shipyard.layout.store import DiagramLayoutStore, LayoutOwner, StoredLayout

__all__ = [
    "EntityBackedNode",
    "FreeNode",
    "LayoutDocument",
    "LayoutEdge",
    "LayoutNode",
    "Position",
    "parse_layout",
    "resolve_nodes",
    "DiagramLayoutStore",
    "LayoutOwner",
    "StoredLayout",
]
