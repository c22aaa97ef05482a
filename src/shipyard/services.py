"""Service wiring for Shipyard.

Builds the lifecycle, aggregation, layout and notification services from
configuration. The web app and the CLI share one Services instance each.
"""

from __future__ import annotations

from dataclasses import dataclass

from shipyard.config import ShipyardConfig
from shipyard.layout.store import DiagramLayoutStore
from shipyard.lifecycle.activity import ActivityLogger
from shipyard.lifecycle.aggregator import ReleaseAggregator
from shipyard.lifecycle.provisioning import ReleaseProvisioner
from shipyard.lifecycle.state_machine import StageLifecycleEngine
from shipyard.web.webhooks import WebhookDispatcher


@dataclass
class Services:
    """Stateless domain services shared across requests.

    Attributes:
        activity: Activity logger.
        lifecycle: Stage lifecycle engine.
        provisioner: Team, environment and release provisioning.
        aggregator: Release status/progress aggregation.
        layouts: Diagram layout store.
        webhooks: Best-effort event notifications.
    """

    activity: ActivityLogger
    lifecycle: StageLifecycleEngine
    provisioner: ReleaseProvisioner
    aggregator: ReleaseAggregator
    layouts: DiagramLayoutStore
    webhooks: WebhookDispatcher


def build_services(config: ShipyardConfig) -> Services:
    """Create the service graph for a configuration.

    Args:
        config: Loaded Shipyard configuration.

    Returns:
        Wired Services instance.
    """
    activity = ActivityLogger(feed_limit=config.lifecycle.activity_feed_limit)
    lifecycle = StageLifecycleEngine(
        activity,
        reopen_done_stages=config.lifecycle.blockers_reopen_done_stages,
    )
    return Services(
        activity=activity,
        lifecycle=lifecycle,
        provisioner=ReleaseProvisioner(
            lifecycle,
            activity,
            default_environments=list(config.lifecycle.default_environments),
        ),
        aggregator=ReleaseAggregator(),
        layouts=DiagramLayoutStore(activity),
        webhooks=WebhookDispatcher.from_config(config.notifications),
    )
