"""Unit tests for layout document validation and node resolution."""

from __future__ import annotations

from uuid import uuid4

import pytest

from shipyard.errors import FieldValidationError
from shipyard.layout.schema import (
    EntityBackedNode,
    FreeNode,
    LayoutDocument,
    parse_layout,
    resolve_nodes,
)


def _node(node_id: str, x: float = 0.0, y: float = 0.0, **extra: object) -> dict[str, object]:
    return {"id": node_id, "position": {"x": x, "y": y}, "data": {}, **extra}


class TestParseLayout:
    """Test layout document validation."""

    def test_empty_document(self) -> None:
        layout = parse_layout({})
        assert layout.nodes == []
        assert layout.edges == []
        assert layout.to_document() == {"nodes": [], "edges": []}

    def test_preserves_exact_positions_and_unknown_keys(self) -> None:
        raw = {
            "nodes": [
                {
                    "id": "n1",
                    "type": "stage",
                    "position": {"x": 123.456789, "y": -0.001},
                    "data": {"label": "Staging", "collapsed": True},
                    "width": 240,
                }
            ],
            "edges": [],
            "viewport": {"x": 0, "y": 0, "zoom": 1.25},
        }

        document = parse_layout(raw).to_document()

        assert document["nodes"][0]["position"] == {"x": 123.456789, "y": -0.001}
        assert document["nodes"][0]["width"] == 240
        assert document["nodes"][0]["data"] == {"label": "Staging", "collapsed": True}
        assert document["viewport"] == {"x": 0, "y": 0, "zoom": 1.25}

    def test_integer_positions_accepted(self) -> None:
        layout = parse_layout({"nodes": [_node("n1", 10, 20)]})
        assert layout.nodes[0].position.x == 10.0

    def test_duplicate_node_ids_rejected(self) -> None:
        with pytest.raises(FieldValidationError, match="Invalid value"):
            parse_layout({"nodes": [_node("n1"), _node("n1", 5, 5)]})

    def test_dangling_edge_rejected(self) -> None:
        raw = {
            "nodes": [_node("a")],
            "edges": [{"id": "e1", "source": "a", "target": "ghost"}],
        }
        with pytest.raises(FieldValidationError) as exc_info:
            parse_layout(raw)
        assert "ghost" in " ".join(exc_info.value.errors.values())

    def test_missing_position_reports_location(self) -> None:
        with pytest.raises(FieldValidationError) as exc_info:
            parse_layout({"nodes": [{"id": "n1", "data": {}}]})
        assert "nodes.0.position" in exc_info.value.errors

    def test_non_finite_position_rejected(self) -> None:
        with pytest.raises(FieldValidationError):
            parse_layout({"nodes": [_node("n1", float("inf"), 0)]})

    def test_empty_node_id_rejected(self) -> None:
        with pytest.raises(FieldValidationError):
            parse_layout({"nodes": [_node("")]})

    def test_empty_helper(self) -> None:
        assert LayoutDocument.empty().node_ids() == []


class TestResolveNodes:
    """Test read-time entity/free classification."""

    def test_live_ids_resolve_to_entities(self) -> None:
        stage_id = str(uuid4())
        layout = parse_layout(
            {
                "nodes": [
                    _node(stage_id, 1, 2),
                    {
                        "id": "note-1",
                        "position": {"x": 3, "y": 4},
                        "data": {"label": "Change freeze", "owner": "ops"},
                    },
                ]
            }
        )

        resolved = resolve_nodes(layout, {stage_id}, "stage")

        assert isinstance(resolved[0], EntityBackedNode)
        assert str(resolved[0].entity_id) == stage_id
        assert resolved[0].entity_kind == "stage"
        assert isinstance(resolved[1], FreeNode)
        assert resolved[1].label == "Change freeze"
        assert resolved[1].custom_fields == {"owner": "ops"}

    def test_node_of_deleted_entity_becomes_free(self) -> None:
        """The stored type flag does not decide the kind; the live set does."""
        stale_id = str(uuid4())
        layout = parse_layout({"nodes": [_node(stale_id, type="task")]})

        resolved = resolve_nodes(layout, set(), "task")

        assert isinstance(resolved[0], FreeNode)
        assert resolved[0].label is None

    def test_non_string_label_ignored(self) -> None:
        layout = parse_layout(
            {"nodes": [{"id": "n", "position": {"x": 0, "y": 0}, "data": {"label": 42}}]}
        )
        free = resolve_nodes(layout, set(), "stage")[0]
        assert isinstance(free, FreeNode)
        assert free.label is None
