"""fal.ai client for synchronous image models.

Image models answer on ``fal.run`` directly instead of going through the
request queue: one POST, one response with hosted image URLs.
"""

import logging
from typing import Any

import httpx

from rhyme_studio.config import Settings, get_settings
from rhyme_studio.exceptions import (
    ConfigurationError,
    UpstreamError,
    UpstreamInvalidResponseError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "fal-image"


class FalImageClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "FalImageClient":
        settings = settings or get_settings()
        return cls(
            settings.fal_api_key,
            base_url=settings.fal_run_url,
            timeout=settings.image_timeout_seconds,
            transport=transport,
        )

    async def generate(self, model: str, payload: dict[str, Any]) -> str:
        """Run one image model and return the URL of the first image.

        Raises:
            UpstreamTimeoutError: No answer within the timeout
            UpstreamError: Transport failure or a non-2xx answer
            UpstreamInvalidResponseError: The answer holds no image
        """
        if not self.api_key:
            raise ConfigurationError("FAL_API_KEY is not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Key {self.api_key}"},
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(f"/{model}", json=payload)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                f"Image request timed out after {self.timeout:.0f}s: {model}",
                service=SERVICE_NAME,
            ) from e
        except httpx.TransportError as e:
            raise UpstreamError(f"Image request failed: {model}: {e}", service=SERVICE_NAME) from e

        if response.is_error:
            logger.error(f"fal.ai image error ({model}): {response.status_code} {response.text}")
            raise UpstreamError(
                f"Image API error: {response.status_code} - {response.text}",
                service=SERVICE_NAME,
                upstream_status=response.status_code,
            )

        images = response.json().get("images") or []
        url = images[0].get("url") if images else None
        if not url:
            raise UpstreamInvalidResponseError("No image in fal.ai response", service=SERVICE_NAME)
        return url
