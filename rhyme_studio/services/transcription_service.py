"""Song transcription through fal.ai Whisper."""

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
from rhyme_studio.schemas.project import TimestampEntry
from rhyme_studio.schemas.storyboard import TranscriptionResult

logger = logging.getLogger(__name__)

SERVICE_NAME = "fal-whisper"


def chunks_to_timestamps(chunks: list[dict[str, Any]]) -> list[TimestampEntry]:
    """Convert Whisper segment chunks into timed lyric lines."""
    entries = []
    for chunk in chunks:
        start, end = (chunk.get("timestamp") or [0.0, None])[:2]
        entries.append(
            TimestampEntry(
                start=start or 0.0,
                # The final segment can come back open-ended
                end=end if end is not None else (start or 0.0),
                text=(chunk.get("text") or "").strip(),
            )
        )
    return entries


class TranscriptionService:
    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    async def transcribe(self, audio_url: str) -> TranscriptionResult:
        if not self.settings.fal_api_key:
            raise ConfigurationError("FAL_API_KEY is not configured")

        logger.info(f"Calling fal.ai Whisper API with audio_url: {audio_url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.transcription_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.settings.whisper_url,
                    headers={"Authorization": f"Key {self.settings.fal_api_key}"},
                    json={
                        "audio_url": audio_url,
                        "task": "transcribe",
                        "chunk_level": "segment",
                        "version": "3",
                    },
                )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("Whisper request timed out", service=SERVICE_NAME) from e
        except httpx.TransportError as e:
            raise UpstreamError(f"Whisper request failed: {e}", service=SERVICE_NAME) from e

        if response.is_error:
            logger.error(f"fal.ai Whisper error: {response.status_code} {response.text}")
            raise UpstreamError(
                f"Whisper API error: {response.status_code} - {response.text}",
                service=SERVICE_NAME,
                upstream_status=response.status_code,
            )

        data = response.json()
        if "text" not in data:
            raise UpstreamInvalidResponseError("Whisper response has no text", service=SERVICE_NAME)

        chunks = data.get("chunks") or []
        logger.info(f"Whisper response received, chunks: {len(chunks)}")
        return TranscriptionResult(text=data["text"], timestamps=chunks_to_timestamps(chunks))
