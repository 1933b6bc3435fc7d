"""HTTP client for the Rhyme Studio backend API."""

import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from rhyme_studio.client.config import API_BASE_URL, LONG_REQUEST_TIMEOUT, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """The backend answered with an error payload."""

    def __init__(self, status_code: int, code: str, message: str, payload: dict | None = None):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.payload = payload or {}
        super().__init__(f"{code} ({status_code}): {message}")

    @property
    def retryable(self) -> bool:
        return bool(self.payload.get("error", {}).get("retryable", False))

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ApiError":
        try:
            payload = response.json()
        except json.JSONDecodeError:
            payload = {}
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            return cls(
                response.status_code,
                error.get("code", "HTTP_ERROR"),
                error.get("message", response.reason_phrase),
                payload,
            )
        return cls(response.status_code, "HTTP_ERROR", response.text or response.reason_phrase)


class NetworkError(Exception):
    """The request may or may not have reached the backend."""

    def __init__(self, message: str, cause: httpx.TransportError | None = None):
        self.cause = cause
        super().__init__(message)


class StudioApiClient:
    def __init__(
        self,
        base_url: str = API_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    def _client(self, timeout: float | httpx.Timeout | None = None) -> httpx.AsyncClient:
        """Create an async HTTP client for one call."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    async def _request(
        self, method: str, path: str, timeout: float | None = None, **kwargs: Any
    ) -> Any:
        try:
            async with self._client(timeout) as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}", cause=e) from e

        if resp.is_error:
            raise ApiError.from_response(resp)
        if resp.status_code == 204:
            return None
        return resp.json()

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    async def create_project(self, name: str, **fields: Any) -> dict:
        return await self._request("POST", "/api/projects", json={"name": name, **fields})

    async def get_project(self, project_id: str) -> dict:
        return await self._request("GET", f"/api/projects/{project_id}")

    async def list_costs(self, project_id: str) -> list[dict]:
        return await self._request("GET", f"/api/projects/{project_id}/costs")

    async def transcribe(self, project_id: str, audio_url: str | None = None) -> dict:
        return await self._request(
            "POST",
            f"/api/projects/{project_id}/transcribe",
            timeout=LONG_REQUEST_TIMEOUT,
            json={"audio_url": audio_url},
        )

    async def generate_storyboard(self, project_id: str) -> dict:
        return await self._request(
            "POST", f"/api/projects/{project_id}/storyboard", timeout=LONG_REQUEST_TIMEOUT
        )

    async def rewrite_prompt(
        self, prompt_type: str, current_prompt: str, feedback: str, scene_description: str = ""
    ) -> str:
        data = await self._request(
            "POST",
            "/api/prompts/rewrite",
            json={
                "prompt_type": prompt_type,
                "current_prompt": current_prompt,
                "scene_description": scene_description,
                "feedback": feedback,
            },
        )
        return data["rewritten_prompt"]

    # -------------------------------------------------------------------------
    # Scenes
    # -------------------------------------------------------------------------

    async def list_scenes(self, project_id: str) -> list[dict]:
        return await self._request("GET", f"/api/projects/{project_id}/scenes")

    async def get_scene(self, scene_id: str) -> dict:
        return await self._request("GET", f"/api/scenes/{scene_id}")

    async def update_scene(self, scene_id: str, changes: dict) -> dict:
        return await self._request("PATCH", f"/api/scenes/{scene_id}", json=changes)

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    async def generate_scene_image(self, scene_id: str) -> dict:
        return await self._request(
            "POST", f"/api/scenes/{scene_id}/image", timeout=LONG_REQUEST_TIMEOUT
        )

    async def generate_character_images(self, project_id: str, character_id: str) -> list[str]:
        data = await self._request(
            "POST",
            f"/api/projects/{project_id}/characters/{character_id}/images",
            timeout=LONG_REQUEST_TIMEOUT,
        )
        return data["images"]

    # -------------------------------------------------------------------------
    # Video jobs
    # -------------------------------------------------------------------------

    async def submit_video(self, scene_id: str, payload: dict | None = None) -> dict:
        return await self._request("POST", f"/api/scenes/{scene_id}/video", json=payload or {})

    async def poll_videos(self, project_id: str) -> dict:
        return await self._request("POST", f"/api/projects/{project_id}/video/poll")

    async def cancel_video(self, scene_id: str, request_id: str | None = None) -> dict:
        return await self._request(
            "POST", f"/api/scenes/{scene_id}/video/cancel", json={"request_id": request_id}
        )

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    async def stream_scene_events(self, project_id: str) -> AsyncGenerator[tuple[str, dict], None]:
        """Yield (event type, payload) pairs from the scene change feed."""
        event_type = "message"
        data_lines: list[str] = []
        try:
            # No read timeout: the stream stays open between events
            async with self._client(httpx.Timeout(self.timeout, read=None)) as client:
                async with client.stream("GET", f"/api/projects/{project_id}/scenes/events") as response:
                    if response.status_code != 200:
                        await response.aread()
                        raise ApiError.from_response(response)

                    async for line in response.aiter_lines():
                        if line.startswith("event: "):
                            event_type = line[7:].strip()
                        elif line.startswith("data: "):
                            data_lines.append(line[6:])
                        elif line == "" and data_lines:
                            try:
                                payload = json.loads("\n".join(data_lines))
                            except json.JSONDecodeError:
                                logger.warning(f"Skipping malformed {event_type} event")
                                payload = None
                            if payload is not None:
                                yield event_type, payload
                            event_type = "message"
                            data_lines = []
        except httpx.TransportError as e:
            raise NetworkError(f"Scene event stream failed: {e}", cause=e) from e
