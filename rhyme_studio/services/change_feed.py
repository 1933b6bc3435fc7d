"""Realtime change feed for scene rows.

Pub/sub keyed by project id, delivered to clients as Server-Sent Events.
Delivery is best effort: a subscriber whose queue is full misses events and
is expected to catch up through polling.
"""

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)

SCENE_INSERTED = "scene_inserted"
SCENE_UPDATED = "scene_updated"
SCENE_DELETED = "scene_deleted"


@dataclass
class SceneChangeEvent:
    """A committed change to one scene row."""

    event_type: str  # scene_inserted, scene_updated, scene_deleted
    project_id: str
    scene_id: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    record: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.event_type,
            "project_id": self.project_id,
            "scene_id": self.scene_id,
            "timestamp": self.timestamp,
        }
        if self.record is not None:
            payload["record"] = self.record
        return payload

    def to_sse(self) -> str:
        """Format event for SSE transmission."""
        return f"event: {self.event_type}\ndata: {json.dumps(self.to_dict(), default=str)}\n\n"


class SceneChangeFeed:
    """Manages per-project subscriptions and publishes scene changes."""

    def __init__(self, max_queue_size: int = 100) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[SceneChangeEvent]]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._max_queue_size = max_queue_size

    async def subscribe(
        self, project_id: str | UUID, heartbeat: float | None = None
    ) -> AsyncGenerator[SceneChangeEvent | None, None]:
        """Yield scene change events for a project until the consumer goes away.

        With a heartbeat interval, None is yielded whenever that many seconds
        pass without an event so streaming callers can keep the connection
        alive.
        """
        key = str(project_id)
        queue: asyncio.Queue[SceneChangeEvent] = asyncio.Queue(maxsize=self._max_queue_size)

        async with self._lock:
            self._subscribers[key].add(queue)
            logger.info(f"New scene feed subscriber for project {key}. Total: {len(self._subscribers[key])}")

        try:
            while True:
                if heartbeat is None:
                    yield await queue.get()
                    continue
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    yield None
        finally:
            async with self._lock:
                self._subscribers[key].discard(queue)
                if not self._subscribers[key]:
                    del self._subscribers[key]
            logger.info(f"Scene feed subscriber removed for project {key}")

    async def publish(
        self,
        project_id: str | UUID,
        event_type: str,
        scene_id: str | UUID,
        record: dict[str, Any] | None = None,
    ) -> int:
        """Publish a change to every subscriber of the project.

        Returns:
            Number of subscribers the event was queued for
        """
        key = str(project_id)
        event = SceneChangeEvent(
            event_type=event_type,
            project_id=key,
            scene_id=str(scene_id),
            record=record,
        )

        async with self._lock:
            subscribers = self._subscribers.get(key, set()).copy()

        notified = 0
        for queue in subscribers:
            try:
                queue.put_nowait(event)
                notified += 1
            except asyncio.QueueFull:
                logger.warning(f"Scene feed queue full for a subscriber of project {key}; event dropped")

        logger.debug(f"Published {event_type} for scene {scene_id} to {notified} subscribers")
        return notified

    def get_subscriber_count(self, project_id: str | UUID) -> int:
        return len(self._subscribers.get(str(project_id), set()))


# Process-wide feed used by the API; tests construct their own
scene_change_feed = SceneChangeFeed()
