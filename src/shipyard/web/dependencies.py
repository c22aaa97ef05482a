"""FastAPI dependencies shared by the Shipyard route modules."""

from __future__ import annotations

from uuid import UUID

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import ActorContext
from shipyard.logging import bind_request_context
from shipyard.services import Services


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """Extract session factory from FastAPI app state.

    Args:
        request: Incoming FastAPI request.

    Returns:
        Session factory from app.state.
    """
    return request.app.state.session_factory  # type: ignore[no-any-return]


def get_services(request: Request) -> Services:
    """Extract the wired domain services from FastAPI app state."""
    return request.app.state.services  # type: ignore[no-any-return]


async def get_actor_context(
    x_actor_id: str | None = Header(default=None),
    x_team_id: UUID | None = Header(default=None),
) -> ActorContext:
    """Build the caller's ActorContext from identity headers.

    The upstream identity layer authenticates the caller and forwards the
    actor id (and optionally the active team) as headers.

    Args:
        x_actor_id: Value of the X-Actor-Id header.
        x_team_id: Value of the X-Team-Id header.

    Returns:
        ActorContext for the request.

    Raises:
        HTTPException: 401 if no actor id was supplied.
    """
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(status_code=401, detail="X-Actor-Id header is required")
    ctx = ActorContext(actor_id=x_actor_id.strip(), team_id=x_team_id)
    bind_request_context(ctx.actor_id, str(ctx.team_id) if ctx.team_id else None)
    return ctx
