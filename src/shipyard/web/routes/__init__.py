"""Shipyard REST API route modules."""

from shipyard.web.routes.activity import create_activity_router
from shipyard.web.routes.blockers import create_blockers_router
from shipyard.web.routes.dashboard import create_dashboard_router
from shipyard.web.routes.diagrams import create_diagrams_router
from shipyard.web.routes.health import create_health_router
from shipyard.web.routes.releases import create_releases_router
from shipyard.web.routes.stages import create_stages_router
from shipyard.web.routes.tasks import create_tasks_router
from shipyard.web.routes.teams import create_teams_router

__all__ = [
    "create_activity_router",
    "create_blockers_router",
    "create_dashboard_router",
    "create_diagrams_router",
    "create_health_router",
    "create_releases_router",
    "create_stages_router",
    "create_tasks_router",
    "create_teams_router",
]
