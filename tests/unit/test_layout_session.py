"""Unit tests for the client-side layout editing session.

Tests cover:
- Clean/dirty/saving state transitions
- Debounced auto-save coalescing rapid edits
- Edits made while a save is in flight
- Suppression of server refreshes while changes are pending
- Grid placement of entities without a saved position
- Retention of locally added nodes the server has not seen yet
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from shipyard.client.http import ShipyardAPIError
from shipyard.client.layout_session import LayoutSession, SaveState, grid_position
from shipyard.config import ClientConfig
from shipyard.layout.store import LayoutOwner


@pytest.fixture
def client() -> MagicMock:
    """A ShipyardClient stand-in whose saves succeed immediately."""
    mock = MagicMock()
    mock.config = ClientConfig(autosave_debounce_seconds=0.0)
    mock.save_layout = AsyncMock(return_value={})
    mock.get_layout = AsyncMock()
    mock.get_release = AsyncMock()
    mock.list_tasks = AsyncMock()
    return mock


def _session(client: MagicMock, debounce: float = 0.0) -> LayoutSession:
    return LayoutSession(client, LayoutOwner.release, uuid4(), debounce_seconds=debounce)


class TestGridPosition:
    """Test default placement of unpositioned entities."""

    @pytest.mark.parametrize(
        "index,expected",
        [
            (0, {"x": 100.0, "y": 100.0}),
            (1, {"x": 450.0, "y": 100.0}),
            (2, {"x": 800.0, "y": 100.0}),
            (3, {"x": 100.0, "y": 300.0}),
            (7, {"x": 450.0, "y": 500.0}),
        ],
    )
    def test_three_column_grid(self, index: int, expected: dict[str, float]) -> None:
        assert grid_position(index) == expected


class TestLocalEdits:
    """Test working-copy edits and their save state."""

    @pytest.mark.asyncio
    async def test_new_session_is_clean(self, client: MagicMock) -> None:
        session = _session(client)
        assert session.state == SaveState.clean
        assert session.document() == {"nodes": [], "edges": []}

    @pytest.mark.asyncio
    async def test_debounce_defaults_to_client_config(self, client: MagicMock) -> None:
        client.config = ClientConfig(autosave_debounce_seconds=1.5)
        session = LayoutSession(client, LayoutOwner.stage, uuid4())
        assert session.debounce_seconds == 1.5
        assert session.entity_type == "task"

    @pytest.mark.asyncio
    async def test_add_node_marks_dirty(self, client: MagicMock) -> None:
        session = _session(client, debounce=60)
        session.add_node("note-1", 10.25, -3.5, node_type="note", data={"label": "Smoke test"})

        assert session.state == SaveState.dirty
        assert session.node("note-1") == {
            "id": "note-1",
            "type": "note",
            "position": {"x": 10.25, "y": -3.5},
            "data": {"label": "Smoke test"},
        }
        await session.close()

    @pytest.mark.asyncio
    async def test_add_duplicate_node_rejected(self, client: MagicMock) -> None:
        session = _session(client, debounce=60)
        session.add_node("note-1", 0, 0)
        with pytest.raises(ValueError, match="duplicate node id"):
            session.add_node("note-1", 5, 5)
        await session.close()

    @pytest.mark.asyncio
    async def test_move_missing_node_raises(self, client: MagicMock) -> None:
        session = _session(client)
        with pytest.raises(KeyError):
            session.move_node("missing", 1, 1)

    @pytest.mark.asyncio
    async def test_remove_node_drops_its_edges(self, client: MagicMock) -> None:
        session = _session(client, debounce=60)
        session.add_node("a", 0, 0)
        session.add_node("b", 100, 0)
        session.add_node("c", 200, 0)
        session.connect("a", "b")
        session.connect("b", "c")

        session.remove_node("b")

        assert [node["id"] for node in session.nodes] == ["a", "c"]
        assert session.edges == []
        await session.close()

    @pytest.mark.asyncio
    async def test_connect_requires_both_ends(self, client: MagicMock) -> None:
        session = _session(client, debounce=60)
        session.add_node("a", 0, 0)
        with pytest.raises(KeyError):
            session.connect("a", "ghost")
        await session.close()


class TestSaving:
    """Test flush, debounce and in-flight behaviour."""

    @pytest.mark.asyncio
    async def test_flush_saves_whole_document(self, client: MagicMock) -> None:
        session = _session(client, debounce=60)
        session.add_node("a", 1.5, 2.5)
        session.add_node("b", 3, 4)
        session.connect("a", "b", edge_id="e1")

        await session.flush()

        client.save_layout.assert_awaited_once()
        owner, owner_id, document = client.save_layout.await_args.args
        assert owner == LayoutOwner.release
        assert owner_id == session.owner_id
        assert [node["id"] for node in document["nodes"]] == ["a", "b"]
        assert document["edges"] == [{"id": "e1", "source": "a", "target": "b"}]
        assert session.state == SaveState.clean
        await session.close()

    @pytest.mark.asyncio
    async def test_flush_when_clean_does_nothing(self, client: MagicMock) -> None:
        session = _session(client)
        await session.flush()
        client.save_layout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rapid_edits_coalesce_into_one_save(self, client: MagicMock) -> None:
        session = _session(client, debounce=0.05)
        session.add_node("a", 0, 0)
        for x in range(5):
            session.move_node("a", x, 0)

        await asyncio.sleep(0.2)

        client.save_layout.assert_awaited_once()
        document = client.save_layout.await_args.args[2]
        assert document["nodes"][0]["position"] == {"x": 4, "y": 0}
        assert session.state == SaveState.clean

    @pytest.mark.asyncio
    async def test_edit_during_save_triggers_second_save(self, client: MagicMock) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_save(owner: Any, owner_id: Any, layout: dict[str, Any]) -> dict[str, Any]:
            started.set()
            await release.wait()
            return {}

        client.save_layout = AsyncMock(side_effect=slow_save)
        session = _session(client)
        session.add_node("a", 10, 20)

        await started.wait()
        assert session.state == SaveState.saving

        session.move_node("a", 30, 40)
        assert session.state == SaveState.saving

        release.set()
        await session.close()

        assert client.save_layout.await_count == 2
        assert client.save_layout.await_args.args[2]["nodes"][0]["position"] == {"x": 30, "y": 40}
        assert session.state == SaveState.clean

    @pytest.mark.asyncio
    async def test_failed_save_leaves_session_dirty(self, client: MagicMock) -> None:
        client.save_layout = AsyncMock(
            side_effect=ShipyardAPIError(403, "forbidden", {"error": "forbidden"})
        )
        session = _session(client, debounce=60)
        session.add_node("a", 0, 0)

        with pytest.raises(ShipyardAPIError):
            await session.flush()
        assert session.state == SaveState.dirty

        client.save_layout = AsyncMock(return_value={})
        await session.close()
        client.save_layout.assert_awaited_once()
        assert session.state == SaveState.clean

    @pytest.mark.asyncio
    async def test_autosave_failure_is_logged_not_raised(self, client: MagicMock) -> None:
        client.save_layout = AsyncMock(
            side_effect=ShipyardAPIError(500, "internal_error", {"error": "internal_error"})
        )
        session = _session(client)
        session.add_node("a", 0, 0)

        await asyncio.sleep(0.05)

        client.save_layout.assert_awaited_once()
        assert session.state == SaveState.dirty


class TestServerRefresh:
    """Test applying stored layouts to the working copy."""

    def test_places_unpositioned_entities_on_grid(self, client: MagicMock) -> None:
        session = _session(client)
        layout = {
            "nodes": [
                {"id": "s1", "type": "stage", "position": {"x": 5.5, "y": 6.5}, "data": {}},
                {"id": "note", "position": {"x": 0, "y": 0}, "data": {"label": "Freeze"}},
            ],
            "edges": [{"id": "e1", "source": "s1", "target": "note"}],
        }

        assert session.apply_server_layout(layout, ["s1", "s2", "s3"]) is True

        assert [node["id"] for node in session.nodes] == ["s1", "note", "s2", "s3"]
        assert session.node("s1")["position"] == {"x": 5.5, "y": 6.5}
        assert session.node("s2") == {
            "id": "s2",
            "type": "stage",
            "position": grid_position(0),
            "data": {},
        }
        assert session.node("s3")["position"] == grid_position(1)
        assert session.edges == layout["edges"]
        assert session.state == SaveState.clean

    def test_keeps_free_nodes_without_live_entity(self, client: MagicMock) -> None:
        session = _session(client)
        layout = {
            "nodes": [{"id": "deleted-stage", "position": {"x": 1, "y": 2}, "data": {}}],
            "edges": [],
        }
        session.apply_server_layout(layout, [])
        assert session.node("deleted-stage") is not None

    @pytest.mark.asyncio
    async def test_refresh_suppressed_while_dirty(self, client: MagicMock) -> None:
        session = _session(client, debounce=60)
        session.add_node("local", 1, 1)

        applied = session.apply_server_layout({"nodes": [], "edges": []}, ["s1"])

        assert applied is False
        assert [node["id"] for node in session.nodes] == ["local"]
        await session.close()

    @pytest.mark.asyncio
    async def test_local_nodes_survive_stale_refresh(self, client: MagicMock) -> None:
        """A saved local node is kept when a refresh predates the save."""
        session = _session(client, debounce=60)
        session.add_node("note", 7, 8, data={"label": "Rollback plan"})
        session.add_node("s1", 0, 0, node_type="stage")
        session.connect("s1", "note", edge_id="e1")
        await session.flush()

        stale = {"nodes": [], "edges": []}
        assert session.apply_server_layout(stale, ["s1"]) is True

        ids = [node["id"] for node in session.nodes]
        assert "note" in ids
        assert "s1" in ids
        assert session.edges == [{"id": "e1", "source": "s1", "target": "note"}]

        # Once the server has the node it is no longer treated as local.
        fresh = {
            "nodes": [
                {"id": "s1", "position": {"x": 0, "y": 0}, "data": {}},
                {"id": "note", "position": {"x": 7, "y": 8}, "data": {}},
            ],
            "edges": [],
        }
        session.apply_server_layout(fresh, ["s1"])
        assert session.edges == []

        removed_elsewhere = {
            "nodes": [{"id": "s1", "position": {"x": 0, "y": 0}, "data": {}}],
            "edges": [],
        }
        session.apply_server_layout(removed_elsewhere, ["s1"])
        assert [node["id"] for node in session.nodes] == ["s1"]
        await session.close()

    @pytest.mark.asyncio
    async def test_refresh_started_while_dirty_is_dropped_after_save(
        self, client: MagicMock
    ) -> None:
        """A fetch sent before a save must not revert the saved positions."""
        old = {"nodes": [{"id": "s1", "position": {"x": 0.0, "y": 0.0}, "data": {}}], "edges": []}
        release_fetch = asyncio.Event()

        async def slow_get_layout(*args: Any) -> dict[str, Any]:
            await release_fetch.wait()
            return {"layout": old}

        client.get_release.return_value = {"stages": [{"id": "s1"}]}
        session = _session(client, debounce=60)
        assert session.apply_server_layout(old, ["s1"]) is True

        client.get_layout = AsyncMock(side_effect=slow_get_layout)
        session.move_node("s1", 500.0, 500.0)
        fetch = asyncio.create_task(session.refresh())
        await asyncio.sleep(0)

        await session.flush()
        assert session.state == SaveState.clean
        release_fetch.set()

        assert await fetch is False
        assert session.node("s1")["position"] == {"x": 500.0, "y": 500.0}
        await session.close()

    @pytest.mark.asyncio
    async def test_refresh_dropped_when_save_lands_mid_fetch(self, client: MagicMock) -> None:
        release_fetch = asyncio.Event()

        async def slow_get_layout(*args: Any) -> dict[str, Any]:
            await release_fetch.wait()
            return {"layout": {"nodes": [], "edges": []}}

        client.get_layout = AsyncMock(side_effect=slow_get_layout)
        client.get_release.return_value = {"stages": []}
        session = _session(client, debounce=60)

        fetch = asyncio.create_task(session.refresh())
        await asyncio.sleep(0)
        session.add_node("note", 3.0, 4.0)
        await session.flush()
        release_fetch.set()

        assert await fetch is False
        assert session.node("note")["position"] == {"x": 3.0, "y": 4.0}
        await session.close()

    @pytest.mark.asyncio
    async def test_refresh_uses_release_stages(self, client: MagicMock) -> None:
        client.get_layout.return_value = {"layout": {"nodes": [], "edges": []}}
        client.get_release.return_value = {"stages": [{"id": "s1"}, {"id": "s2"}]}
        session = _session(client)

        assert await session.refresh() is True

        client.get_layout.assert_awaited_once_with(LayoutOwner.release, session.owner_id)
        assert [node["id"] for node in session.nodes] == ["s1", "s2"]

    @pytest.mark.asyncio
    async def test_refresh_uses_stage_tasks(self, client: MagicMock) -> None:
        client.get_layout.return_value = {"layout": {"nodes": [], "edges": []}}
        client.list_tasks.return_value = [{"id": "t1"}]
        session = LayoutSession(client, LayoutOwner.stage, uuid4(), debounce_seconds=0)

        await session.refresh()

        assert session.nodes[0]["type"] == "task"
        client.get_release.assert_not_awaited()
