"""Unit tests for FastAPI application setup.

Tests cover:
- Application factory creates FastAPI instance with services wired
- CORS and request logging middleware are configured
- Health and readiness endpoints
- Correlation id propagation
- Domain error to HTTP status mapping
- Actor identity header handling
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from httpx import ASGITransport, AsyncClient

from shipyard import __version__
from shipyard.access import ActorContext
from shipyard.config import ShipyardConfig, WebConfig
from shipyard.errors import (
    ApprovalRejectedError,
    ConflictError,
    FieldValidationError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ReferentialViolationError,
    ShipyardError,
)
from shipyard.services import Services
from shipyard.web.app import create_app
from shipyard.web.dependencies import get_actor_context
from shipyard.web.errors import register_exception_handlers, status_code_for
from shipyard.web.middleware import RequestLoggingMiddleware


def _client(app: FastAPI, **kwargs: object) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app, **kwargs), base_url="http://test")


class TestCreateApp:
    """Test application factory function."""

    def test_returns_configured_app(self) -> None:
        app = create_app()
        assert isinstance(app, FastAPI)
        assert app.title == "Shipyard"
        assert app.version == __version__

    def test_stores_config_and_services_in_state(self) -> None:
        config = ShipyardConfig()
        app = create_app(config)
        assert app.state.config is config
        assert isinstance(app.state.services, Services)

    def test_cors_uses_config_origins(self) -> None:
        origins = ["https://ship.example.com"]
        app = create_app(ShipyardConfig(web=WebConfig(cors_origins=origins)))

        cors = [m for m in app.user_middleware if m.cls == CORSMiddleware]
        assert len(cors) == 1
        assert cors[0].kwargs["allow_origins"] == origins
        assert cors[0].kwargs["allow_credentials"] is True

    def test_logging_middleware_is_registered(self) -> None:
        app = create_app()
        assert any(m.cls == RequestLoggingMiddleware for m in app.user_middleware)

    def test_routes_registered(self) -> None:
        paths = set(create_app().openapi()["paths"])
        for path in (
            "/health/",
            "/health/ready",
            "/teams/",
            "/releases/",
            "/releases/{release_id}",
            "/releases/{release_id}/stages",
            "/releases/{release_id}/diagram",
            "/stages/{stage_id}",
            "/stages/{stage_id}/approve",
            "/stages/{stage_id}/task-diagram",
            "/tasks/{task_id}",
            "/blockers/{blocker_id}",
            "/activity/",
            "/dashboard/",
        ):
            assert path in paths, path


class TestHealthEndpoints:
    """Test health and readiness endpoints with a mocked session factory."""

    @pytest.mark.asyncio
    async def test_health_returns_ok(self) -> None:
        app = create_app()
        app.state.session_factory = MagicMock()
        async with _client(app) as client:
            response = await client.get("/health/")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_readiness_connected(self) -> None:
        app = create_app()
        session = AsyncMock()
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=session)
        factory.return_value.__aexit__ = AsyncMock(return_value=None)
        app.state.session_factory = factory

        async with _client(app) as client:
            response = await client.get("/health/ready")

        assert response.json() == {"status": "ok", "database": "connected"}
        session.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_readiness_disconnected(self) -> None:
        app = create_app()
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(side_effect=OSError("connection refused"))
        factory.return_value.__aexit__ = AsyncMock(return_value=None)
        app.state.session_factory = factory

        async with _client(app) as client:
            response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "unhealthy", "database": "disconnected"}


class TestCorrelationId:
    """Test correlation id handling in middleware."""

    @pytest.mark.asyncio
    async def test_generated_when_absent(self) -> None:
        app = create_app()
        async with _client(app) as client:
            response = await client.get("/health/")
        assert response.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_echoes_provided_id(self) -> None:
        app = create_app()
        async with _client(app) as client:
            response = await client.get("/health/", headers={"X-Correlation-ID": "corr-7"})
        assert response.headers["X-Correlation-ID"] == "corr-7"


class TestStatusCodeFor:
    """Test the domain error to status mapping."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (NotFoundError("release", "r1"), 404),
            (ConflictError("environment", "name", "Staging"), 409),
            (FieldValidationError({"name": "required"}), 422),
            (ForbiddenError("bob", "t1"), 403),
            (ApprovalRejectedError("s1", []), 422),
            (ReferentialViolationError("team", "t1", ["fk"]), 409),
            (InvalidTransitionError("done", "in_progress"), 409),
            (ShipyardError("unmapped"), 400),
        ],
    )
    def test_mapping(self, error: ShipyardError, expected: int) -> None:
        assert status_code_for(error) == expected


def _error_app(exc: Exception) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    async def boom() -> None:
        raise exc

    return app


class TestErrorHandlers:
    """Test error response bodies."""

    @pytest.mark.asyncio
    async def test_approval_rejected_body(self) -> None:
        incomplete = [{"id": "t1", "title": "Run migration", "status": "todo"}]
        app = _error_app(ApprovalRejectedError("s1", incomplete))

        async with _client(app) as client:
            response = await client.get("/boom")

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "approval_rejected"
        assert body["stage_id"] == "s1"
        assert body["incomplete_tasks"] == incomplete
        assert "1 required task(s)" in body["detail"]

    @pytest.mark.asyncio
    async def test_conflict_body(self) -> None:
        app = _error_app(ConflictError("environment", "name", "Staging", "e1"))

        async with _client(app) as client:
            response = await client.get("/boom")

        assert response.status_code == 409
        assert response.json()["existing_id"] == "e1"
        assert response.json()["field"] == "name"

    @pytest.mark.asyncio
    async def test_unexpected_error_hides_details(self) -> None:
        app = _error_app(RuntimeError("secret connection string"))

        async with _client(app, raise_app_exceptions=False) as client:
            response = await client.get("/boom")

        assert response.status_code == 500
        assert response.json() == {"error": "internal_error"}


class TestActorContextDependency:
    """Test identity headers."""

    @pytest.fixture
    def whoami_app(self) -> FastAPI:
        app = FastAPI()

        @app.get("/whoami")
        async def whoami(ctx: ActorContext = Depends(get_actor_context)) -> dict[str, str | None]:
            return {"actor": ctx.actor_id, "team": str(ctx.team_id) if ctx.team_id else None}

        return app

    @pytest.mark.asyncio
    async def test_missing_actor_is_401(self, whoami_app: FastAPI) -> None:
        async with _client(whoami_app) as client:
            response = await client.get("/whoami")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_blank_actor_is_401(self, whoami_app: FastAPI) -> None:
        async with _client(whoami_app) as client:
            response = await client.get("/whoami", headers={"X-Actor-Id": "   "})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_actor_and_team_headers(self, whoami_app: FastAPI) -> None:
        team_id = "7f0c5e8e-4a53-4a43-9d8e-0a9d0c7f3c11"
        async with _client(whoami_app) as client:
            response = await client.get(
                "/whoami", headers={"X-Actor-Id": " alice ", "X-Team-Id": team_id}
            )
        assert response.json() == {"actor": "alice", "team": team_id}
