"""Local scene cache with snapshot/rollback for optimistic updates."""

import copy
import logging
import time
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Any

logger = logging.getLogger(__name__)

GENERATING = "generating"

Listener = Callable[["SceneCache"], None]


class SceneCache:
    """The single authoritative local view of a project's scenes.

    Scenes are plain dicts as returned by the API, keyed by scene id.
    Every mutation notifies the registered listeners.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._scenes: dict[str, dict[str, Any]] = {}
        self._listeners: list[Listener] = []
        self._clock = clock
        self.last_local_mutation: float | None = None

    def __len__(self) -> int:
        return len(self._scenes)

    def __contains__(self, scene_id: object) -> bool:
        return scene_id in self._scenes

    def get(self, scene_id: str) -> dict[str, Any] | None:
        scene = self._scenes.get(scene_id)
        return dict(scene) if scene is not None else None

    def all(self) -> list[dict[str, Any]]:
        """Scenes ordered by scene number."""
        return sorted(
            (dict(s) for s in self._scenes.values()),
            key=lambda s: s.get("scene_number", 0),
        )

    def generating_count(self) -> int:
        return sum(1 for s in self._scenes.values() if s.get("video_status") == GENERATING)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in self._listeners:
            listener(self)

    # -------------------------------------------------------------------------
    # Server state
    # -------------------------------------------------------------------------

    def replace_all(self, scenes: Iterable[dict[str, Any]]) -> None:
        """Load a full scene list fetched from the server."""
        self._scenes = {str(s["id"]): dict(s) for s in scenes}
        self._changed()

    def upsert(self, scene: dict[str, Any]) -> None:
        self._scenes[str(scene["id"])] = dict(scene)
        self._changed()

    def remove(self, scene_id: str) -> None:
        if self._scenes.pop(scene_id, None) is not None:
            self._changed()

    # -------------------------------------------------------------------------
    # Local mutations
    # -------------------------------------------------------------------------

    def patch(self, scene_id: str, changes: dict[str, Any]) -> None:
        """Apply a local change and stamp the mutation time."""
        scene = self._scenes.get(scene_id)
        if scene is None:
            raise KeyError(scene_id)
        scene.update(changes)
        self.last_local_mutation = self._clock()
        self._changed()

    def snapshot(self, scene_ids: Iterable[str] | None = None) -> dict[str, dict[str, Any]]:
        if scene_ids is None:
            return copy.deepcopy(self._scenes)
        return {sid: copy.deepcopy(self._scenes[sid]) for sid in scene_ids if sid in self._scenes}

    def restore(self, snapshot: dict[str, dict[str, Any]], *, partial: bool = False) -> None:
        """Put snapshotted scenes back; a partial restore leaves other scenes alone."""
        if partial:
            self._scenes.update(copy.deepcopy(snapshot))
        else:
            self._scenes = copy.deepcopy(snapshot)
        self._changed()

    @asynccontextmanager
    async def optimistic(self, changes: dict[str, dict[str, Any]]) -> AsyncIterator[None]:
        """Apply patches up front; roll the touched scenes back if the body raises.

        Only the patched scenes are restored, so concurrent mutations of
        other scenes survive a sibling's rollback.

        Args:
            changes: scene id -> fields to set
        """
        snapshot = self.snapshot(changes)
        for scene_id, patch in changes.items():
            self.patch(scene_id, patch)
        try:
            yield
        except BaseException:
            logger.debug(f"Rolling back optimistic update of {len(changes)} scene(s)")
            self.restore(snapshot, partial=True)
            raise

    def cooldown_remaining(self, window: float) -> float:
        """Seconds until ``window`` has passed since the last local mutation."""
        if self.last_local_mutation is None:
            return 0.0
        return max(0.0, window - (self._clock() - self.last_local_mutation))

    def in_cooldown(self, window: float) -> bool:
        """Whether a local mutation happened within the last ``window`` seconds."""
        return self.cooldown_remaining(window) > 0
