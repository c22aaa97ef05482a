"""Pytest fixtures for integration tests.

Provides async database fixtures backed by a per-test SQLite file with
foreign keys enforced, so cascading deletes behave as on PostgreSQL, plus
wired domain services and an HTTP client for the FastAPI app.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shipyard.access import ActorContext, ResourceScope
from shipyard.config import DatabaseConfig, ShipyardConfig
from shipyard.database.connection import get_engine, get_session_factory
from shipyard.database.models import Base, Stage, Team
from shipyard.database.queries.stage import list_stages
from shipyard.services import Services, build_services
from shipyard.web.app import create_app


@pytest.fixture
def config(tmp_path: Path) -> ShipyardConfig:
    """Configuration pointing at a SQLite file in the test's temp directory."""
    return ShipyardConfig(
        database=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'shipyard.db'}"),
    )


@pytest_asyncio.fixture
async def engine(config: ShipyardConfig) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite async engine with all tables.

    Yields:
        Configured AsyncEngine instance.
    """
    test_engine = get_engine(config.database)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a new async database session for each test.

    The session is rolled back after the test completes.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def services(config: ShipyardConfig) -> Services:
    return build_services(config)


@pytest.fixture
def actor() -> ActorContext:
    return ActorContext(actor_id="alice")


@pytest_asyncio.fixture
async def team(
    session_factory: async_sessionmaker[AsyncSession],
    services: Services,
    actor: ActorContext,
) -> Team:
    """A committed team "Platform" with the default environments, admin alice."""
    async with session_factory() as session, session.begin():
        return await services.provisioner.create_team(session, actor, uuid4(), "Platform")


@pytest_asyncio.fixture
async def release_scope(
    session_factory: async_sessionmaker[AsyncSession],
    services: Services,
    actor: ActorContext,
    team: Team,
) -> ResourceScope:
    """A committed release "R1" of the Platform team, with its three stages."""
    async with session_factory() as session, session.begin():
        scope = ResourceScope(team=team)
        release, _ = await services.provisioner.create_release(session, actor, scope, "R1")
    return ResourceScope(team=team, release=release)


@pytest.fixture
def app(config: ShipyardConfig, session_factory: async_sessionmaker[AsyncSession]) -> Any:
    """Create the FastAPI app bound to the test database."""
    test_app = create_app(config)
    test_app.state.session_factory = session_factory
    return test_app


@pytest_asyncio.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client acting as alice.

    Yields:
        AsyncClient configured for the test app.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Actor-Id": "alice"},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def stages(
    session_factory: async_sessionmaker[AsyncSession],
    release_scope: ResourceScope,
) -> list[Stage]:
    """The stages of R1 in pipeline order: Staging, UAT, Production."""
    async with session_factory() as session:
        return await list_stages(session, [release_scope.release_id])
