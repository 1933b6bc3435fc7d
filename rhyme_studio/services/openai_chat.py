"""Minimal chat-completions client shared by storyboard and prompt rewriting."""

import logging
from dataclasses import dataclass
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

SERVICE_NAME = "openai"


@dataclass
class ChatCompletion:
    content: str
    tokens_input: int | None = None
    tokens_output: int | None = None


async def create_chat_completion(
    messages: list[dict[str, str]],
    *,
    model: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    json_mode: bool = False,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChatCompletion:
    """Call the chat-completions endpoint and return the first choice.

    Raises:
        ConfigurationError: OPENAI_API_KEY is not set
        UpstreamError: Non-2xx answer or transport failure
        UpstreamInvalidResponseError: The answer has no message content
    """
    settings = settings or get_settings()
    if not settings.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY not configured")

    payload: dict[str, Any] = {"model": model, "messages": messages}
    if temperature is not None:
        payload["temperature"] = temperature
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    if json_mode:
        payload["response_format"] = {"type": "json_object"}

    try:
        async with httpx.AsyncClient(
            timeout=settings.llm_timeout_seconds, transport=transport
        ) as client:
            response = await client.post(
                f"{settings.openai_base_url.rstrip('/')}/chat/completions",
                headers={
                    "Authorization": f"Bearer {settings.openai_api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
    except httpx.TimeoutException as e:
        raise UpstreamTimeoutError("OpenAI request timed out", service=SERVICE_NAME) from e
    except httpx.TransportError as e:
        raise UpstreamError(f"OpenAI request failed: {e}", service=SERVICE_NAME) from e

    if response.status_code != 200:
        logger.error(f"OpenAI API error: {response.status_code} {response.text}")
        raise UpstreamError(
            f"OpenAI API error: {response.status_code}",
            service=SERVICE_NAME,
            upstream_status=response.status_code,
        )

    data = response.json()
    choices = data.get("choices") or []
    content = (choices[0].get("message") or {}).get("content") if choices else None
    if not content:
        raise UpstreamInvalidResponseError("No content in OpenAI response", service=SERVICE_NAME)

    usage = data.get("usage") or {}
    return ChatCompletion(
        content=content,
        tokens_input=usage.get("prompt_tokens"),
        tokens_output=usage.get("completion_tokens"),
    )
