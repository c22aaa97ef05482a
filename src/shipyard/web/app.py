"""FastAPI application factory for Shipyard.

This module provides the application factory that creates and configures
the Shipyard API with:
- CORS middleware for the browser editor
- Request logging middleware with correlation IDs
- Domain error to HTTP status mapping
- Database connection lifecycle management
- Team, release, stage, task, blocker, diagram and activity routes

Example usage:
    >>> from shipyard.config import ShipyardConfig
    >>> from shipyard.web.app import create_app
    >>>
    >>> app = create_app(ShipyardConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shipyard import __version__
from shipyard.config import ShipyardConfig
from shipyard.database.connection import get_engine, get_session_factory
from shipyard.logging import get_logger
from shipyard.services import Services, build_services
from shipyard.web.errors import register_exception_handlers
from shipyard.web.middleware import RequestLoggingMiddleware
from shipyard.web.routes import (
    create_activity_router,
    create_blockers_router,
    create_dashboard_router,
    create_diagrams_router,
    create_health_router,
    create_releases_router,
    create_stages_router,
    create_tasks_router,
    create_teams_router,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle with database connections.

    Creates the engine and session factory on startup and stores them in
    app.state; on shutdown closes the webhook client and disposes of the
    connection pool.

    Args:
        app: FastAPI application instance

    Yields:
        None after startup, cleans up on context exit
    """
    config: ShipyardConfig = app.state.config
    services: Services = app.state.services

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    engine: AsyncEngine = get_engine(config.database)
    session_factory: async_sessionmaker[AsyncSession] = get_session_factory(engine)
    app.state.engine = engine
    app.state.session_factory = session_factory

    logger.info(
        "database_pool_initialized",
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )

    yield

    logger.info("app_shutdown_begin")
    await services.webhooks.close()
    await engine.dispose()
    logger.info("database_pool_disposed")


def create_app(config: ShipyardConfig | None = None) -> FastAPI:
    """Create and configure the Shipyard FastAPI application.

    Services are wired here rather than in the lifespan so an app driven
    without lifespan events (e.g. through httpx's ASGITransport) only
    needs ``app.state.session_factory`` to be set.

    Args:
        config: Optional ShipyardConfig. If None, creates default config.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = ShipyardConfig()

    app = FastAPI(
        title="Shipyard",
        version=__version__,
        description="Release readiness tracking across deployment environments",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.services = build_services(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    for router in (
        create_health_router(),
        create_teams_router(),
        create_releases_router(),
        create_stages_router(),
        create_tasks_router(),
        create_blockers_router(),
        create_diagrams_router(),
        create_activity_router(),
        create_dashboard_router(),
    ):
        app.include_router(router)

    logger.info(
        "app_created",
        cors_origins=config.web.cors_origins,
        version=__version__,
    )

    return app
