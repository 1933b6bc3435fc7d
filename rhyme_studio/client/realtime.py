"""Realtime scene notifications over Server-Sent Events.

The stream is a latency optimization only: disconnects are logged and
retried with exponential backoff, and fallback polling covers the gaps.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from rhyme_studio.client.api_client import ApiError, NetworkError, StudioApiClient
from rhyme_studio.client.config import REALTIME_RECONNECT_INITIAL, REALTIME_RECONNECT_MAX

logger = logging.getLogger(__name__)

SCENE_EVENTS = frozenset({"scene_inserted", "scene_updated", "scene_deleted"})

EventHandler = Callable[[str, dict[str, Any]], Awaitable[Any]]


class RealtimeListener:
    def __init__(
        self,
        api: StudioApiClient,
        project_id: str,
        on_event: EventHandler,
        *,
        initial_backoff: float = REALTIME_RECONNECT_INITIAL,
        max_backoff: float = REALTIME_RECONNECT_MAX,
        max_reconnects: int | None = None,
    ) -> None:
        self.api = api
        self.project_id = project_id
        self.on_event = on_event
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.max_reconnects = max_reconnects
        self.reconnects = 0
        self._task: asyncio.Task | None = None

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def run(self) -> None:
        backoff = self.initial_backoff
        while True:
            try:
                async for event_type, payload in self.api.stream_scene_events(self.project_id):
                    backoff = self.initial_backoff
                    if event_type in SCENE_EVENTS:
                        await self.on_event(event_type, payload)
                logger.info(f"Scene event stream for project {self.project_id} closed")
            except (NetworkError, ApiError) as e:
                logger.warning(f"Scene event stream error: {e}")

            if self.max_reconnects is not None and self.reconnects >= self.max_reconnects:
                logger.info("Scene event stream reconnect limit reached")
                return
            self.reconnects += 1
            logger.info(f"Reconnecting scene event stream in {backoff:.1f}s")
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self.max_backoff)
