"""Async HTTP client for the Shipyard API.

This module provides an httpx based client that sends the caller's
identity headers with every request and turns error responses into
exceptions carrying the API's error kind.

Example usage:
    >>> from shipyard.config import ClientConfig
    >>> async with ShipyardClient(ClientConfig(), actor_id="alice") as client:
    ...     release = await client.get_release(release_id)
    ...     await client.approve_stage(release["stages"][0]["id"], note="smoke ok")
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import httpx
import structlog

from shipyard.config import ClientConfig
from shipyard.layout.store import LayoutOwner

logger = structlog.get_logger(__name__)


class ShipyardClientError(Exception):
    """Base exception for Shipyard client errors."""

    pass


class ShipyardConnectionError(ShipyardClientError):
    """Raised when the API cannot be reached or times out."""

    pass


class ShipyardAPIError(ShipyardClientError):
    """Raised when the API returns an error response.

    Attributes:
        status_code: HTTP status of the response.
        error: Error kind from the body (e.g. ``approval_rejected``).
        body: Decoded response body.
    """

    def __init__(self, status_code: int, error: str, body: dict[str, Any]) -> None:
        self.status_code = status_code
        self.error = error
        self.body = body
        super().__init__(f"API error: HTTP {status_code} {error}: {body.get('detail', '')}")


def _layout_path(owner: LayoutOwner, owner_id: UUID | str) -> str:
    if owner == LayoutOwner.release:
        return f"/releases/{owner_id}/diagram"
    return f"/stages/{owner_id}/task-diagram"


class ShipyardClient:
    """Async client for the Shipyard REST API.

    Attributes:
        config: Client configuration (base URL and timeout).
        actor_id: Identity sent as ``X-Actor-Id``.
        team_id: Optional team scope sent as ``X-Team-Id``.
    """

    def __init__(
        self,
        config: ClientConfig,
        actor_id: str,
        team_id: UUID | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: ClientConfig with connection settings.
            actor_id: Acting identity.
            team_id: Optional team scope.
            transport: Optional httpx transport, e.g. an ASGITransport.
        """
        self.config = config
        self.actor_id = actor_id
        self.team_id = team_id
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ShipyardClient:
        headers = {"X-Actor-Id": self.actor_id}
        if self.team_id is not None:
            headers["X-Team-Id"] = str(self.team_id)
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("ShipyardClient must be used as async context manager")
        return self._client

    async def _request(self, method: str, path: str, json: Any = None, **params: Any) -> Any:
        """Send a request and decode the response.

        Args:
            method: HTTP method.
            path: Path relative to the base URL.
            json: Optional JSON body.
            **params: Query parameters; None values are dropped.

        Returns:
            Decoded JSON body, or None for 204 responses.

        Raises:
            ShipyardConnectionError: On transport failures and timeouts.
            ShipyardAPIError: On 4xx/5xx responses.
        """
        client = self._get_client()
        query = {key: str(value) for key, value in params.items() if value is not None}
        try:
            response = await client.request(method, path, json=json, params=query or None)
        except httpx.TransportError as exc:
            logger.error("shipyard_request_failed", method=method, path=path, error=str(exc))
            raise ShipyardConnectionError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"detail": response.text}
            if not isinstance(body, dict):
                body = {"detail": body}
            error = str(body.get("error", "http_error"))
            logger.warning(
                "shipyard_api_error",
                method=method,
                path=path,
                status_code=response.status_code,
                error=error,
            )
            raise ShipyardAPIError(response.status_code, error, body)

        if response.status_code == 204:
            return None
        return response.json()

    # --- Releases ---

    async def list_releases(
        self, team_id: UUID | str | None = None, outcome: str = "all"
    ) -> list[dict[str, Any]]:
        return await self._request("GET", "/releases/", team_id=team_id, outcome=outcome)

    async def get_release(self, release_id: UUID | str) -> dict[str, Any]:
        return await self._request("GET", f"/releases/{release_id}")

    async def create_release(
        self,
        team_id: UUID | str,
        name: str,
        version: str | None = None,
    ) -> dict[str, Any]:
        body = {"team_id": str(team_id), "name": name, "version": version}
        return await self._request("POST", "/releases/", json=body)

    # --- Stages ---

    async def get_stage(self, stage_id: UUID | str) -> dict[str, Any]:
        return await self._request("GET", f"/stages/{stage_id}")

    async def update_stage(self, stage_id: UUID | str, status: str) -> dict[str, Any]:
        return await self._request("PATCH", f"/stages/{stage_id}", json={"status": status})

    async def approve_stage(self, stage_id: UUID | str, note: str | None = None) -> dict[str, Any]:
        """Approve a stage.

        Raises:
            ShipyardAPIError: With ``error == "approval_rejected"`` and the
                incomplete tasks in ``body["incomplete_tasks"]`` when
                required tasks are still open.
        """
        return await self._request("POST", f"/stages/{stage_id}/approve", json={"note": note})

    async def list_tasks(self, stage_id: UUID | str) -> list[dict[str, Any]]:
        return await self._request("GET", f"/stages/{stage_id}/tasks")

    async def create_task(self, stage_id: UUID | str, title: str, **fields: Any) -> dict[str, Any]:
        body = {"title": title, **fields}
        return await self._request("POST", f"/stages/{stage_id}/tasks", json=body)

    async def update_task(self, task_id: UUID | str, **fields: Any) -> dict[str, Any]:
        return await self._request("PATCH", f"/tasks/{task_id}", json=fields)

    async def create_blocker(self, stage_id: UUID | str, reason: str, **fields: Any) -> dict[str, Any]:
        body = {"reason": reason, **fields}
        return await self._request("POST", f"/stages/{stage_id}/blockers", json=body)

    async def resolve_blocker(self, blocker_id: UUID | str) -> dict[str, Any]:
        return await self._request("PATCH", f"/blockers/{blocker_id}", json={"active": False})

    # --- Diagrams ---

    async def get_layout(self, owner: LayoutOwner, owner_id: UUID | str) -> dict[str, Any]:
        """Fetch a stored layout with its resolved nodes."""
        return await self._request("GET", _layout_path(owner, owner_id))

    async def save_layout(
        self,
        owner: LayoutOwner,
        owner_id: UUID | str,
        layout: dict[str, Any],
    ) -> dict[str, Any]:
        """Replace a stored layout with a whole document."""
        method = "PUT" if owner == LayoutOwner.release else "POST"
        return await self._request(method, _layout_path(owner, owner_id), json=layout)

    # --- Activity ---

    async def list_activity(
        self,
        workspace_id: UUID | str | None = None,
        release_id: UUID | str | None = None,
        stage_id: UUID | str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._request(
            "GET",
            "/activity/",
            workspace_id=workspace_id,
            release_id=release_id,
            stage_id=stage_id,
        )
