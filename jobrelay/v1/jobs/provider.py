"""
Delivery provider client.

The provider owns retries, HTTP delivery and request signing. This module
only publishes messages and registers schedules through its REST API.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from fastapi import Depends

from jobrelay.config.logging import get_logger
from jobrelay.config.settings import Settings, get_settings
from jobrelay.v1.core.exceptions import ConfigurationError, DeliveryError

logger = get_logger(__name__)

FORWARD_HEADER_PREFIX = "Upstash-Forward-"


@dataclass
class PublishRequest:
    """One message for the provider to deliver to a worker endpoint."""

    url: str
    body: dict[str, Any]
    retries: int
    delay: int | None = None
    callback: str | None = None
    failure_callback: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ScheduleRequest:
    """A recurring delivery registered under a stable schedule id."""

    destination: str
    cron: str
    body: dict[str, Any]
    schedule_id: str
    retries: int | None = None


class DeliveryProvider(Protocol):
    """Protocol for push-based delivery services."""

    async def publish(self, request: PublishRequest) -> str:
        """Publish a message and return the provider's message id."""
        ...

    async def create_schedule(self, request: ScheduleRequest) -> str:
        """Create or update a schedule and return its id."""
        ...


class QStashDeliveryProvider:
    """DeliveryProvider backed by the QStash REST API."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        if not settings.qstash_token:
            raise ConfigurationError(
                "QStash token is not configured. Set QSTASH_TOKEN."
            )
        self.base_url = settings.qstash_url.rstrip("/")
        self._token = settings.qstash_token
        self._timeout = settings.delivery_timeout_s
        self._client = client

    async def publish(self, request: PublishRequest) -> str:
        headers = self._forward_headers(request.headers)
        headers["Upstash-Retries"] = str(request.retries)
        if request.delay:
            headers["Upstash-Delay"] = f"{request.delay}s"
        if request.callback:
            headers["Upstash-Callback"] = request.callback
        if request.failure_callback:
            headers["Upstash-Failure-Callback"] = request.failure_callback

        data = await self._post(f"/v2/publish/{request.url}", request.body, headers)

        message_id = data.get("messageId")
        if not message_id:
            raise DeliveryError(
                "Provider response did not include a message id",
                details={"url": request.url},
            )
        return message_id

    async def create_schedule(self, request: ScheduleRequest) -> str:
        headers = {
            "Upstash-Cron": request.cron,
            "Upstash-Schedule-Id": request.schedule_id,
        }
        if request.retries is not None:
            headers["Upstash-Retries"] = str(request.retries)

        data = await self._post(
            f"/v2/schedules/{request.destination}", request.body, headers
        )
        return data.get("scheduleId", request.schedule_id)

    @staticmethod
    def _forward_headers(headers: dict[str, str]) -> dict[str, str]:
        # Custom headers must be prefixed to reach the destination
        forwarded = {}
        for name, value in headers.items():
            if not name.lower().startswith(FORWARD_HEADER_PREFIX.lower()):
                name = f"{FORWARD_HEADER_PREFIX}{name}"
            forwarded[name] = value
        return forwarded

    async def _post(
        self, path: str, body: dict[str, Any], headers: dict[str, str]
    ) -> dict[str, Any]:
        request_headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            **headers,
        }
        content = json.dumps(body, separators=(",", ":"))

        try:
            if self._client is not None:
                response = await self._client.post(
                    f"{self.base_url}{path}", content=content, headers=request_headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        f"{self.base_url}{path}",
                        content=content,
                        headers=request_headers,
                    )
        except httpx.HTTPError as e:
            logger.error("Delivery provider unreachable", path=path, error=str(e))
            raise DeliveryError(
                "Delivery provider request failed", details={"error": str(e)}
            ) from e

        if response.status_code >= 400:
            logger.error(
                "Delivery provider rejected request",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise DeliveryError(
                f"Delivery provider returned {response.status_code}",
                details={"status_code": response.status_code, "body": response.text[:500]},
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise DeliveryError("Delivery provider returned invalid JSON") from e


def get_delivery_provider(
    settings: Settings = Depends(get_settings),
) -> DeliveryProvider:
    """Dependency injection function for the delivery provider."""
    return QStashDeliveryProvider(settings)
