"""Client-side editing session for one diagram layout.

The server replaces layouts wholesale and never merges, so the editor keeps
its own working copy and is responsible for not losing nodes. A
``LayoutSession`` holds that copy and moves through three save states:

    clean -> dirty      on any local edit
    dirty -> saving     when the debounce window elapses (or on flush())
    saving -> clean     when the save completes with no edits in between
    saving -> dirty     when the copy was edited while the save was in flight

Server refreshes are applied only when the session was clean when the
fetch started and nothing was edited or saved while it was in flight, so
an in-flight or pending local change is never overwritten by a fetch. When a refresh is applied,
free nodes and locally added nodes the server has not seen yet are kept,
and live entities without a saved position are placed on a grid.
"""

from __future__ import annotations

import asyncio
import copy
import enum
from typing import Any
from uuid import UUID

import structlog

from shipyard.client.http import ShipyardClient, ShipyardClientError
from shipyard.layout.store import LayoutOwner

logger = structlog.get_logger(__name__)

GRID_COLUMNS = 3
GRID_ORIGIN = 100.0
GRID_COLUMN_WIDTH = 350.0
GRID_ROW_HEIGHT = 200.0


class SaveState(str, enum.Enum):
    """Save state of a layout session."""

    clean = "clean"
    dirty = "dirty"
    saving = "saving"


def grid_position(index: int) -> dict[str, float]:
    """Default position of the index-th entity that has no saved position."""
    return {
        "x": GRID_ORIGIN + (index % GRID_COLUMNS) * GRID_COLUMN_WIDTH,
        "y": GRID_ORIGIN + (index // GRID_COLUMNS) * GRID_ROW_HEIGHT,
    }


class LayoutSession:
    """Editable working copy of one release or stage diagram.

    Attributes:
        client: Open ShipyardClient.
        owner: Whether this is a release (stage canvas) or stage (task canvas).
        owner_id: Release or stage id.
        debounce_seconds: Idle window before an automatic save.
        state: Current save state.
        nodes: Working copy of the layout nodes.
        edges: Working copy of the layout edges.
    """

    def __init__(
        self,
        client: ShipyardClient,
        owner: LayoutOwner,
        owner_id: UUID | str,
        debounce_seconds: float | None = None,
    ) -> None:
        self.client = client
        self.owner = owner
        self.owner_id = str(owner_id)
        self.debounce_seconds = (
            client.config.autosave_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.state = SaveState.clean
        self.nodes: list[dict[str, Any]] = []
        self.edges: list[dict[str, Any]] = []
        self._local_ids: set[str] = set()
        self._generation = 0
        self._save_count = 0
        self._changed_while_saving = False
        self._save_lock = asyncio.Lock()
        self._timer: asyncio.Task[None] | None = None
        self.logger = logger.bind(owner=owner.value, owner_id=self.owner_id)

    @property
    def entity_type(self) -> str:
        return "stage" if self.owner == LayoutOwner.release else "task"

    def document(self) -> dict[str, Any]:
        """Return a copy of the working layout as a whole document."""
        return {"nodes": copy.deepcopy(self.nodes), "edges": copy.deepcopy(self.edges)}

    def node(self, node_id: str) -> dict[str, Any] | None:
        for node in self.nodes:
            if node["id"] == node_id:
                return node
        return None

    # --- Server sync ---

    async def _live_ids(self) -> list[str]:
        if self.owner == LayoutOwner.release:
            release = await self.client.get_release(self.owner_id)
            return [stage["id"] for stage in release["stages"]]
        return [task["id"] for task in await self.client.list_tasks(self.owner_id)]

    async def refresh(self) -> bool:
        """Fetch the stored layout and live entities and apply them.

        Returns:
            True if the server copy was applied, False if it was suppressed
            because local changes were pending or made while fetching.
        """
        started_clean = self.state == SaveState.clean
        generation, save_count = self._generation, self._save_count
        stored = await self.client.get_layout(self.owner, self.owner_id)
        live_ids = await self._live_ids()
        if not started_clean or (generation, save_count) != (self._generation, self._save_count):
            # The response may predate a local edit or save.
            self.logger.debug(
                "stale_server_refresh_dropped", started_clean=started_clean, state=self.state.value
            )
            return False
        return self.apply_server_layout(stored["layout"], live_ids)

    def apply_server_layout(self, layout: dict[str, Any], live_ids: list[str]) -> bool:
        """Replace the working copy with a server layout, unless edits are pending.

        Args:
            layout: Stored layout document.
            live_ids: Ids of the live stages (or tasks) in pipeline order.

        Returns:
            True if applied, False if suppressed.
        """
        if self.state != SaveState.clean:
            self.logger.debug("server_refresh_suppressed", state=self.state.value)
            return False

        nodes = copy.deepcopy(layout.get("nodes", []))
        edges = copy.deepcopy(layout.get("edges", []))
        present = {node["id"] for node in nodes}

        self._local_ids &= {node["id"] for node in self.nodes}
        self._local_ids -= present
        for node in self.nodes:
            if node["id"] in self._local_ids:
                nodes.append(copy.deepcopy(node))
                present.add(node["id"])

        unplaced = [entity_id for entity_id in live_ids if entity_id not in present]
        for index, entity_id in enumerate(unplaced):
            nodes.append(
                {
                    "id": entity_id,
                    "type": self.entity_type,
                    "position": grid_position(index),
                    "data": {},
                }
            )

        edge_ids = {edge["id"] for edge in edges}
        edges.extend(
            copy.deepcopy(edge)
            for edge in self.edges
            if edge["id"] not in edge_ids
            and {edge["source"], edge["target"]} & self._local_ids
            and {edge["source"], edge["target"]} <= present
        )

        self.nodes = nodes
        self.edges = edges
        self.logger.debug(
            "server_layout_applied",
            node_count=len(self.nodes),
            placed=len(unplaced),
            kept_local=len(self._local_ids),
        )
        return True

    # --- Local edits ---

    def add_node(
        self,
        node_id: str,
        x: float,
        y: float,
        node_type: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Add a node, e.g. a free annotation box or a just-created entity."""
        if self.node(node_id) is not None:
            raise ValueError(f"duplicate node id: {node_id}")
        node: dict[str, Any] = {"id": node_id, "position": {"x": x, "y": y}, "data": data or {}}
        if node_type is not None:
            node["type"] = node_type
        self.nodes.append(node)
        self._local_ids.add(node_id)
        self._mark_dirty()

    def move_node(self, node_id: str, x: float, y: float) -> None:
        node = self.node(node_id)
        if node is None:
            raise KeyError(node_id)
        node["position"] = {"x": x, "y": y}
        self._mark_dirty()

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge touching it."""
        self.nodes = [node for node in self.nodes if node["id"] != node_id]
        self.edges = [
            edge for edge in self.edges if node_id not in (edge["source"], edge["target"])
        ]
        self._local_ids.discard(node_id)
        self._mark_dirty()

    def connect(self, source: str, target: str, edge_id: str | None = None) -> dict[str, Any]:
        """Add a directed edge between two present nodes."""
        for end in (source, target):
            if self.node(end) is None:
                raise KeyError(end)
        edge = {"id": edge_id or f"e-{source}-{target}", "source": source, "target": target}
        self.edges.append(edge)
        self._mark_dirty()
        return edge

    def _mark_dirty(self) -> None:
        self._generation += 1
        if self.state == SaveState.saving:
            # flush() reschedules once the in-flight save completes
            self._changed_while_saving = True
            return
        self.state = SaveState.dirty
        self._schedule_save()

    # --- Saving ---

    def _schedule_save(self) -> None:
        timer = self._timer
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._debounced_save(self._generation))

    async def _debounced_save(self, generation: int) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if generation != self._generation:
            return
        try:
            await self.flush()
        except ShipyardClientError as exc:
            # The session stays dirty; the next edit or flush() retries.
            self.logger.warning("layout_autosave_failed", error=str(exc))

    async def flush(self) -> None:
        """Save the working copy now if it has unsaved changes.

        Raises:
            ShipyardClientError: If the save fails; the session is left dirty.
        """
        async with self._save_lock:
            if self.state != SaveState.dirty:
                return
            self.state = SaveState.saving
            self._save_count += 1
            self._changed_while_saving = False
            document = self.document()
            try:
                await self.client.save_layout(self.owner, self.owner_id, document)
            except ShipyardClientError:
                self.state = SaveState.dirty
                raise

            if self._changed_while_saving:
                self.state = SaveState.dirty
                self._schedule_save()
            else:
                self.state = SaveState.clean
            self.logger.info(
                "layout_saved",
                node_count=len(document["nodes"]),
                edge_count=len(document["edges"]),
                state=self.state.value,
            )

    async def close(self) -> None:
        """Wait for an in-flight save, then flush any unsaved changes."""
        timer = self._timer
        if timer is not None and not timer.done() and self.state == SaveState.saving:
            await timer
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        if self.state == SaveState.dirty:
            await self.flush()
