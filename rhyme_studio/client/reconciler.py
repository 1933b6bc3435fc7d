"""Client-side reconciliation of scene state.

Three sources update the local scene cache: optimistic local mutations,
realtime change notifications, and a fallback poll that runs while any scene
is generating. The rules that keep them from clobbering each other:

- local mutations snapshot the cache first and restore it if the request fails
- realtime refetches wait out a short cooldown after a local mutation, then
  catch up with a single refetch
- a network error on submission is double-checked against the server before it
  is reported, since the job may have been created anyway
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from rhyme_studio.client.api_client import ApiError, NetworkError, StudioApiClient
from rhyme_studio.client.config import MUTATION_COOLDOWN, NETWORK_RECHECK_DELAY, POLL_INTERVAL
from rhyme_studio.client.realtime import RealtimeListener
from rhyme_studio.client.request_queue import SerialRequestQueue
from rhyme_studio.client.scene_cache import SceneCache

logger = logging.getLogger(__name__)

PENDING = "pending"
GENERATING = "generating"
DONE = "done"
FAILED = "failed"

# level, message
Notify = Callable[[str, str], None]


def _log_notification(level: str, message: str) -> None:
    logger.info(f"[{level}] {message}")


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"


class SceneReconciler:
    def __init__(
        self,
        api: StudioApiClient,
        project_id: str,
        *,
        cache: SceneCache | None = None,
        queue: SerialRequestQueue | None = None,
        notify: Notify | None = None,
        mutation_cooldown: float = MUTATION_COOLDOWN,
        poll_interval: float = POLL_INTERVAL,
        network_recheck_delay: float = NETWORK_RECHECK_DELAY,
    ) -> None:
        self.api = api
        self.project_id = project_id
        self.cache = cache or SceneCache()
        self.queue = queue or SerialRequestQueue()
        self.notify = notify or _log_notification
        self.mutation_cooldown = mutation_cooldown
        self.poll_interval = poll_interval
        self.network_recheck_delay = network_recheck_delay

        self.poll_state = PollState.IDLE
        self._poll_task: asyncio.Task | None = None
        self._catch_up_task: asyncio.Task | None = None
        self.listener: RealtimeListener | None = None
        self.cache.subscribe(self._on_cache_changed)

    async def start(self, listen: bool = False) -> None:
        """Load the scene list; with ``listen`` also follow the realtime feed."""
        await self.refresh()
        if listen:
            self.listener = RealtimeListener(self.api, self.project_id, self.handle_realtime)
            self.listener.start()

    async def close(self) -> None:
        if self.listener is not None:
            await self.listener.stop()
            self.listener = None
        await self._cancel_catch_up()
        self.poll_state = PollState.IDLE
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None

    async def refresh(self) -> None:
        """Replace the cache with the server's scene list."""
        scenes = await self.api.list_scenes(self.project_id)
        self.cache.replace_all(scenes)

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except (ApiError, NetworkError) as e:
            logger.warning(f"Scene refetch failed: {e}")

    # =========================================================================
    # Realtime
    # =========================================================================

    async def handle_realtime(self, event_type: str, payload: dict[str, Any]) -> bool:
        """React to a change notification by refetching, unless a local
        mutation is still settling.

        Returns:
            Whether a refetch happened
        """
        if self.cache.in_cooldown(self.mutation_cooldown):
            logger.debug(f"Deferring {event_type} until the local mutation cooldown ends")
            if self._catch_up_task is None or self._catch_up_task.done():
                self._catch_up_task = asyncio.get_running_loop().create_task(self._catch_up())
            return False
        await self._cancel_catch_up()
        await self._refresh_quietly()
        return True

    async def _catch_up(self) -> None:
        """One refetch once the cooldown is over, for notifications it swallowed."""
        while True:
            remaining = self.cache.cooldown_remaining(self.mutation_cooldown)
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)
        await self._refresh_quietly()

    async def _cancel_catch_up(self) -> None:
        task = self._catch_up_task
        self._catch_up_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # =========================================================================
    # Fallback polling
    # =========================================================================

    def _on_cache_changed(self, cache: SceneCache) -> None:
        if cache.generating_count() > 0:
            self._start_polling()
        else:
            self._stop_polling()

    def _start_polling(self) -> None:
        if self.poll_state is PollState.POLLING:
            return
        self.poll_state = PollState.POLLING
        logger.debug("Fallback polling started")
        # A loop that saw IDLE mid-tick but has not exited yet picks the new state up
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    def _stop_polling(self) -> None:
        if self.poll_state is PollState.IDLE:
            return
        self.poll_state = PollState.IDLE
        logger.debug("Fallback polling stopped")
        task = self._poll_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            self._poll_task = None

    async def _poll_loop(self) -> None:
        while self.poll_state is PollState.POLLING:
            await asyncio.sleep(self.poll_interval)
            if self.poll_state is not PollState.POLLING:
                break
            try:
                await self.poll_once()
            except (ApiError, NetworkError) as e:
                logger.warning(f"Fallback poll failed, retrying next tick: {e}")

    async def poll_once(self) -> dict[str, Any]:
        """Run one server poll cycle, announce its updates and refetch."""
        result = await self.api.poll_videos(self.project_id)
        for update in result.get("updates", []):
            number = update.get("scene_number")
            if update.get("status") == DONE:
                self.notify("success", f"Scene {number} video is ready")
            else:
                self.notify("error", f"Scene {number} video failed: {update.get('error')}")
        await self.refresh()
        return result

    # =========================================================================
    # Video jobs
    # =========================================================================

    async def submit_video(self, scene_id: str, payload: dict[str, Any] | None = None) -> bool:
        """Submit a scene through the serial queue with an optimistic status.

        Returns:
            Whether the job is (as far as the server shows) running
        """
        scene = self.cache.get(scene_id)
        if scene is None:
            raise KeyError(scene_id)
        if scene.get("video_status") == GENERATING:
            self.notify("info", f"Scene {scene['scene_number']} is already generating")
            return False

        response: dict[str, Any] | None = None
        try:
            async with self.cache.optimistic(
                {scene_id: {"video_status": GENERATING, "video_error": None}}
            ):
                try:
                    response = await self.queue.enqueue(lambda: self.api.submit_video(scene_id, payload))
                except NetworkError:
                    if not await self._confirm_submitted(scene_id):
                        raise
                    logger.info(f"Scene {scene_id} submission confirmed despite network error")
        except NetworkError as e:
            self.notify("error", f"Scene {scene['scene_number']}: could not reach the server ({e})")
            return False
        except ApiError as e:
            self.notify("error", f"Scene {scene['scene_number']}: {e.message}")
            # The server may have recorded the failure on the scene
            await self._refresh_quietly()
            return False

        if response is not None:
            self._mark_started(scene_id, response.get("request_id"))
        return True

    def _mark_started(self, scene_id: str, request_id: str | None) -> None:
        """Re-apply the running state once the server has accepted the job.

        A refetch that landed while the request was queued or in flight may
        have put the server's earlier pending row back into the cache.
        """
        current = self.cache.get(scene_id)
        if current is None:
            return
        if current.get("video_request_id") == request_id and current.get("video_status") != PENDING:
            # Already refetched with this job's own state
            return
        self.cache.patch(
            scene_id,
            {"video_status": GENERATING, "video_request_id": request_id, "video_error": None},
        )

    async def _confirm_submitted(self, scene_id: str) -> bool:
        await asyncio.sleep(self.network_recheck_delay)
        try:
            current = await self.api.get_scene(scene_id)
        except (ApiError, NetworkError) as e:
            logger.warning(f"Re-check of scene {scene_id} failed: {e}")
            return False
        if current.get("video_status") in (GENERATING, DONE):
            self.cache.upsert(current)
            return True
        return False

    async def generate_all(self) -> dict[str, bool]:
        """Submit every pending or failed scene that has a still image.

        Scenes are independent: one failure never stops the rest.
        """
        targets = [
            s["id"]
            for s in self.cache.all()
            if s.get("image_url") and s.get("video_status") in (PENDING, FAILED)
        ]
        if not targets:
            self.notify("info", "No scenes ready for video generation")
            return {}

        results = await asyncio.gather(*(self.submit_video(scene_id) for scene_id in targets))
        outcome = dict(zip(targets, results))
        started = sum(1 for ok in results if ok)
        self.notify("info", f"Started video generation for {started} of {len(targets)} scenes")
        return outcome

    async def cancel_video(self, scene_id: str) -> bool:
        scene = self.cache.get(scene_id)
        if scene is None:
            raise KeyError(scene_id)

        try:
            async with self.cache.optimistic(
                {
                    scene_id: {
                        "video_status": PENDING,
                        "video_request_id": None,
                        "video_url": None,
                        "video_error": None,
                    }
                }
            ):
                await self.api.cancel_video(scene_id, scene.get("video_request_id"))
        except (ApiError, NetworkError) as e:
            self.notify("error", f"Could not cancel scene {scene['scene_number']}: {e}")
            return False

        self.notify("info", f"Scene {scene['scene_number']} video cancelled")
        return True

    async def update_scene(self, scene_id: str, changes: dict[str, Any]) -> bool:
        """Edit storyboard fields optimistically."""
        try:
            async with self.cache.optimistic({scene_id: changes}):
                updated = await self.api.update_scene(scene_id, changes)
        except (ApiError, NetworkError) as e:
            self.notify("error", f"Could not save scene: {e}")
            return False
        self.cache.upsert(updated)
        return True

    async def generate_image(self, scene_id: str) -> bool:
        """Generate a scene's still image through the serial queue."""
        scene = self.cache.get(scene_id)
        if scene is None:
            raise KeyError(scene_id)

        try:
            async with self.cache.optimistic({scene_id: {"image_status": GENERATING}}):
                result = await self.queue.enqueue(lambda: self.api.generate_scene_image(scene_id))
        except NetworkError as e:
            self.notify("error", f"Scene {scene['scene_number']}: could not reach the server ({e})")
            return False
        except ApiError as e:
            self.notify("error", f"Scene {scene['scene_number']} image failed: {e.message}")
            await self._refresh_quietly()
            return False

        if self.cache.get(scene_id) is not None:
            self.cache.patch(scene_id, {"image_status": DONE, "image_url": result["image_url"]})
        self.notify("success", f"Scene {scene['scene_number']} image is ready")
        return True
