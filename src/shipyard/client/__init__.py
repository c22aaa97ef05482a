"""Python client for the Shipyard API.

``ShipyardClient`` wraps the REST surface; ``LayoutSession`` keeps an
editable copy of one diagram and auto-saves it.
"""

from shipyard.client.http import (
    ShipyardAPIError,
    ShipyardClient,
    ShipyardClientError,
    ShipyardConnectionError,
)
from shipyard.client.layout_session import LayoutSession, SaveState, grid_position

__all__ = [
    "ShipyardAPIError",
    "ShipyardClient",
    "ShipyardClientError",
    "ShipyardConnectionError",
    "LayoutSession",
    "SaveState",
    "grid_position",
]
