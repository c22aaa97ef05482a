"""Dashboard REST API endpoint for Shipyard.

Returns every release the caller can see with its derived state, plus
per-outcome counts for the dashboard header.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shipyard.access import ActorContext
from shipyard.lifecycle.aggregator import OutcomeFilter
from shipyard.services import Services
from shipyard.web.dependencies import get_actor_context, get_services, get_session_factory
from shipyard.web.routes.releases import ReleaseSummaryResponse


class DashboardResponse(BaseModel):
    """Response schema for the release dashboard."""

    total: int
    ongoing: int
    finished: int
    failed: int
    releases: list[ReleaseSummaryResponse] = Field(default_factory=list)


def create_dashboard_router() -> APIRouter:
    """Create the dashboard router.

    Returns:
        Configured APIRouter.
    """
    router = APIRouter(prefix="/dashboard", tags=["dashboard"])

    @router.get("/", response_model=DashboardResponse)
    async def get_dashboard_endpoint(
        team_id: UUID | None = None,
        ctx: ActorContext = Depends(get_actor_context),
        services: Services = Depends(get_services),
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ) -> DashboardResponse:
        async with session_factory() as session:
            summaries = await services.aggregator.list_summaries(session, ctx, team_id=team_id)

        outcomes = [summary.outcome for summary in summaries]
        return DashboardResponse(
            total=len(summaries),
            ongoing=outcomes.count(OutcomeFilter.ongoing),
            finished=outcomes.count(OutcomeFilter.finished),
            failed=outcomes.count(OutcomeFilter.failed),
            releases=[ReleaseSummaryResponse.from_summary(summary) for summary in summaries],
        )

    return router
