"""fal.ai queue client for image-to-video jobs.

Wraps the four queue operations the job lifecycle needs: submit, status,
result and cancel. Every call is bounded by a timeout; transport failures
and non-2xx answers are raised as UpstreamError subclasses so callers can
choose between surfacing them (submission) and skipping them (polling).
"""

import logging
from dataclasses import dataclass

import httpx

from rhyme_studio.config import Settings, get_settings
from rhyme_studio.exceptions import (
    ConfigurationError,
    UpstreamError,
    UpstreamInvalidResponseError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "fal-video"

# Queue states reported by fal.ai
IN_QUEUE = "IN_QUEUE"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
FAILED = "FAILED"


@dataclass
class UpstreamJobStatus:
    status: str
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (COMPLETED, FAILED)


class FalVideoClient:
    """Async client for the fal.ai request queue of one video model."""

    def __init__(
        self,
        api_key: str,
        *,
        queue_url: str,
        model_endpoint: str,
        model_base: str,
        submit_timeout: float = 15.0,
        status_timeout: float = 15.0,
        cancel_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.queue_url = queue_url.rstrip("/")
        self.model_endpoint = model_endpoint
        self.model_base = model_base
        self.submit_timeout = submit_timeout
        self.status_timeout = status_timeout
        self.cancel_timeout = cancel_timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "FalVideoClient":
        settings = settings or get_settings()
        return cls(
            settings.fal_api_key,
            queue_url=settings.fal_queue_url,
            model_endpoint=settings.video_model_endpoint,
            model_base=settings.video_model_base,
            submit_timeout=settings.video_submit_timeout_seconds,
            status_timeout=settings.video_status_timeout_seconds,
            cancel_timeout=settings.video_cancel_timeout_seconds,
            transport=transport,
        )

    def _client(self, timeout: float) -> httpx.AsyncClient:
        if not self.api_key:
            raise ConfigurationError("FAL_API_KEY is not configured")
        return httpx.AsyncClient(
            base_url=self.queue_url,
            headers={"Authorization": f"Key {self.api_key}"},
            timeout=timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, timeout: float, **kwargs) -> httpx.Response:
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                f"fal.ai request timed out after {timeout:.0f}s: {method} {path}",
                service=SERVICE_NAME,
            ) from e
        except httpx.TransportError as e:
            raise UpstreamError(
                f"fal.ai request failed: {method} {path}: {e}",
                service=SERVICE_NAME,
            ) from e

        if response.is_error:
            raise UpstreamError(
                f"fal.ai API error: {response.status_code} - {response.text}",
                service=SERVICE_NAME,
                upstream_status=response.status_code,
            )
        return response

    async def submit(
        self,
        prompt: str,
        image_url: str,
        *,
        duration: int = 6,
        resolution: str = "1080p",
        fps: int = 25,
    ) -> str:
        """Queue one image-to-video job.

        Returns:
            The upstream request id
        """
        response = await self._request(
            "POST",
            f"/{self.model_endpoint}",
            self.submit_timeout,
            json={
                "prompt": prompt,
                "image_url": image_url,
                "duration": duration,
                "resolution": resolution,
                "fps": fps,
                "generate_audio": False,
            },
        )
        request_id = response.json().get("request_id")
        if not request_id:
            raise UpstreamInvalidResponseError(
                "fal.ai did not return a request_id", service=SERVICE_NAME
            )
        logger.info(f"fal.ai request queued with ID: {request_id}")
        return request_id

    async def get_status(self, request_id: str) -> UpstreamJobStatus:
        # Status and result queries use the base model path, not the full endpoint
        response = await self._request(
            "GET",
            f"/{self.model_base}/requests/{request_id}/status",
            self.status_timeout,
        )
        data = response.json()
        return UpstreamJobStatus(status=data.get("status", ""), error=data.get("error"))

    async def get_result(self, request_id: str) -> str | None:
        """Fetch a completed job's output video URL (None if the payload has none)."""
        response = await self._request(
            "GET",
            f"/{self.model_base}/requests/{request_id}",
            self.status_timeout,
        )
        video = response.json().get("video") or {}
        return video.get("url")

    async def cancel(self, request_id: str) -> None:
        await self._request(
            "PUT",
            f"/{self.model_endpoint}/requests/{request_id}/cancel",
            self.cancel_timeout,
        )
        logger.info(f"Cancelled fal.ai request {request_id}")
