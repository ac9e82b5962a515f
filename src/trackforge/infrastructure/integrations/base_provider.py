"""Shared HTTP plumbing for generation provider clients."""

import logging
from typing import Any

import httpx

from trackforge.config import ProviderSettings
from trackforge.domain.exceptions import (
    ConfigurationError,
    ProviderProtocolError,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
)
from trackforge.domain.ports import IGenerationProvider
from trackforge.domain.value_objects import TaskStatus

logger = logging.getLogger(__name__)


class BaseProviderClient(IGenerationProvider):
    """httpx-based provider client with our error taxonomy.

    Subclasses set ``STATUS_MAP`` and implement the endpoint-specific parts.
    """

    STATUS_MAP: dict[str, TaskStatus] = {}

    # Hey future me, ``transport`` is only for tests (httpx.MockTransport). Production
    # leaves it None and httpx uses the real network.
    def __init__(
        self,
        settings: ProviderSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if not self.settings.is_configured:
            raise ConfigurationError(f"{self.service.value} API key is not configured")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url,
                headers={
                    "Authorization": f"Bearer {self.settings.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=httpx.Timeout(self.settings.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Yo, this is THE error translation point. Everything a caller needs to decide
    # "retry or give up" is encoded in the exception type:
    # timeout -> ProviderTimeout, network/5xx -> ProviderUnavailable, 4xx -> ProviderRejected,
    # garbage body -> ProviderProtocolError.
    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and return the decoded JSON body."""
        service = self.service.value
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("%s %s %s timed out: %s", service, method, url, e)
            raise ProviderTimeout(f"{service} request timed out", service) from e
        except httpx.RequestError as e:
            logger.warning("%s %s %s failed: %s", service, method, url, e)
            raise ProviderUnavailable(f"{service} is unreachable: {e}", service) from e

        if response.status_code >= 500:
            raise ProviderUnavailable(
                f"{service} answered {response.status_code}", service
            )
        if response.status_code >= 400:
            raise ProviderRejected(
                f"{service} rejected the request ({response.status_code}): "
                f"{response.text[:200]}",
                service,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderProtocolError(f"{service} returned a non-JSON body", service) from e
        if not isinstance(data, dict):
            raise ProviderProtocolError(f"{service} returned an unexpected body", service)
        return data

    def normalize_status(self, raw_status: str | None) -> TaskStatus:
        """Map a raw status via ``STATUS_MAP``. Unknown statuses count as running."""
        if raw_status is None:
            return TaskStatus.QUEUED
        status = self.STATUS_MAP.get(raw_status) or self.STATUS_MAP.get(raw_status.lower())
        if status is None:
            logger.warning(
                "Unknown %s status %r, treating as running", self.service.value, raw_status
            )
            return TaskStatus.RUNNING
        return status
