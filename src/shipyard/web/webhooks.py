"""Webhook dispatcher for Shipyard event notifications.

This module sends release events to external services. It supports:
- Multiple webhook endpoints with per-endpoint configuration
- HMAC-SHA256 signatures for payload authenticity
- Retry logic with exponential backoff on delivery failures
- Structured event payloads with timestamps

Delivery is best effort. It runs after the request's transaction has
committed, and a failed delivery is logged but never fails or rolls back
the mutation that produced the event.

Supported event types:
- STAGE_APPROVED: A stage passed the approval gate
- BLOCKER_CREATED: A blocker was opened on a stage
- BLOCKER_RESOLVED: A blocker was resolved
- RELEASE_CREATED: A release was created with its stages

Example:
    dispatcher = WebhookDispatcher.from_config(config.notifications)
    await dispatcher.send(WebhookEvent.STAGE_APPROVED, {"stage_id": str(stage.id)})
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from shipyard.config import NotificationsConfig, WebhookEndpointConfig

logger = structlog.get_logger(__name__)


class WebhookEvent(str, Enum):
    """Types of webhook events that can be dispatched."""

    STAGE_APPROVED = "stage.approved"
    BLOCKER_CREATED = "blocker.created"
    BLOCKER_RESOLVED = "blocker.resolved"
    RELEASE_CREATED = "release.created"


class WebhookPayload(BaseModel):
    """Structured payload for webhook delivery.

    Attributes:
        event: The type of event being delivered.
        timestamp: ISO 8601 timestamp when the event occurred.
        data: Event-specific data payload.
    """

    event: WebhookEvent = Field(..., description="The webhook event type")
    timestamp: str = Field(..., description="ISO 8601 timestamp of the event")
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific data")


class WebhookDispatcher:
    """Dispatches webhook events to configured endpoints.

    Attributes:
        endpoints: List of configured webhook endpoints.
        backoff_base: Seconds to wait before the first retry; doubled per attempt.
    """

    def __init__(
        self,
        endpoints: list[WebhookEndpointConfig] | None = None,
        backoff_base: float = 1.0,
    ) -> None:
        self.endpoints = endpoints or []
        self.backoff_base = backoff_base
        self.logger = logger.bind(component="webhook_dispatcher")
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, config: NotificationsConfig) -> WebhookDispatcher:
        return cls(endpoints=list(config.endpoints))

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def sign_payload(payload: str, secret: str) -> str:
        """Generate the hex HMAC-SHA256 signature of a payload.

        Args:
            payload: The JSON payload string to sign.
            secret: The secret key for HMAC generation.

        Returns:
            Hexadecimal digest of the signature.
        """
        return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()

    def _build_headers(
        self,
        event: WebhookEvent,
        payload_str: str,
        secret: str | None,
    ) -> dict[str, str]:
        timestamp = str(int(datetime.now(timezone.utc).timestamp()))
        headers = {
            "Content-Type": "application/json",
            "X-Shipyard-Event": event.value,
            "X-Shipyard-Timestamp": timestamp,
        }
        if secret:
            headers["X-Shipyard-Signature"] = self.sign_payload(payload_str, secret)
        return headers

    async def _send_to_endpoint(
        self,
        endpoint: WebhookEndpointConfig,
        event: WebhookEvent,
        payload: WebhookPayload,
    ) -> bool:
        """Send a payload to one endpoint with retries.

        Returns:
            True if delivery was successful (or the endpoint is disabled).
        """
        if not endpoint.enabled:
            self.logger.debug("webhook_endpoint_disabled", url=endpoint.url, event_type=event.value)
            return True

        payload_str = payload.model_dump_json()
        headers = self._build_headers(event, payload_str, endpoint.secret)
        client = await self._get_client()
        last_error: Exception | None = None

        for attempt in range(endpoint.retry_count + 1):
            try:
                response = await client.post(
                    endpoint.url,
                    content=payload_str,
                    headers=headers,
                    timeout=endpoint.timeout_seconds,
                )
                if response.is_success:
                    self.logger.info(
                        "webhook_delivered",
                        url=endpoint.url,
                        event_type=event.value,
                        status_code=response.status_code,
                        attempt=attempt + 1,
                    )
                    return True

                self.logger.warning(
                    "webhook_non_success_status",
                    url=endpoint.url,
                    event_type=event.value,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                )
                last_error = httpx.HTTPStatusError(
                    f"HTTP {response.status_code}",
                    request=response.request,
                    response=response,
                )

            except httpx.TimeoutException as e:
                last_error = e
                self.logger.warning(
                    "webhook_timeout",
                    url=endpoint.url,
                    event_type=event.value,
                    attempt=attempt + 1,
                    error=str(e),
                )

            except httpx.RequestError as e:
                last_error = e
                self.logger.warning(
                    "webhook_request_failed",
                    url=endpoint.url,
                    event_type=event.value,
                    attempt=attempt + 1,
                    error=str(e),
                )

            # Exponential backoff before retry (1s, 2s, 4s, ...)
            if attempt < endpoint.retry_count:
                await asyncio.sleep(self.backoff_base * 2**attempt)

        self.logger.error(
            "webhook_delivery_exhausted",
            url=endpoint.url,
            event_type=event.value,
            retry_count=endpoint.retry_count,
            error=str(last_error),
        )
        return False

    async def send(self, event: WebhookEvent, data: dict[str, Any]) -> bool:
        """Send an event to all configured endpoints concurrently.

        Args:
            event: The type of event to send.
            data: Event-specific data payload.

        Returns:
            True if delivery to all enabled endpoints succeeded.
        """
        if not self.endpoints:
            self.logger.debug("webhook_no_endpoints", event_type=event.value)
            return True

        payload = WebhookPayload(
            event=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=data,
        )
        self.logger.info("webhook_sending", event_type=event.value, endpoint_count=len(self.endpoints))

        results = await asyncio.gather(
            *(self._send_to_endpoint(endpoint, event, payload) for endpoint in self.endpoints),
            return_exceptions=True,
        )

        all_success = True
        for endpoint, result in zip(self.endpoints, results):
            if isinstance(result, Exception):
                self.logger.error(
                    "webhook_unexpected_error",
                    url=endpoint.url,
                    error=str(result),
                )
                all_success = False
            elif result is not True:
                all_success = False
        return all_success

    async def publish(self, event: WebhookEvent, data: dict[str, Any]) -> None:
        """Send an event without ever raising; used after commit."""
        try:
            await self.send(event, data)
        except Exception as exc:
            self.logger.error("webhook_publish_failed", event_type=event.value, error=str(exc), exc_info=True)
