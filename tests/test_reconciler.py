"""Tests for client-side scene reconciliation.

The backend is an AsyncMock standing in for StudioApiClient, backed by a
plain dict of server-side scene records.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from rhyme_studio.client.api_client import ApiError, NetworkError, StudioApiClient
from rhyme_studio.client.reconciler import PollState, SceneReconciler
from rhyme_studio.client.request_queue import SerialRequestQueue
from rhyme_studio.client.scene_cache import SceneCache


def scene_record(number: int, **fields) -> dict:
    record = {
        "id": f"s{number}",
        "project_id": "p1",
        "scene_number": number,
        "image_url": f"https://cdn.example.com/scene-{number}.png",
        "video_status": "pending",
        "video_request_id": None,
        "video_url": None,
        "video_error": None,
        "animation_prompt": "The star pulses softly",
    }
    record.update(fields)
    return record


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def server() -> dict[str, dict]:
    return {}


@pytest.fixture
def api(server) -> AsyncMock:
    api = AsyncMock(spec=StudioApiClient)
    api.list_scenes.side_effect = lambda project_id: [
        dict(s) for s in sorted(server.values(), key=lambda s: s["scene_number"])
    ]
    api.get_scene.side_effect = lambda scene_id: dict(server[scene_id])
    return api


@pytest.fixture
def notes() -> list[tuple[str, str]]:
    return []


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def reconciler(api, notes, clock):
    reconciler = SceneReconciler(
        api,
        "p1",
        cache=SceneCache(clock=clock),
        queue=SerialRequestQueue(delay=0),
        notify=lambda level, message: notes.append((level, message)),
        poll_interval=60,
        network_recheck_delay=0,
    )
    yield reconciler
    await reconciler.close()


async def load(reconciler: SceneReconciler, server: dict, *records: dict) -> None:
    for record in records:
        server[record["id"]] = record
    await reconciler.refresh()


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# =============================================================================
# Scene cache
# =============================================================================


class TestSceneCache:
    """Tests for SceneCache snapshots and cooldown."""

    def test_patch_unknown_scene(self):
        cache = SceneCache()

        with pytest.raises(KeyError):
            cache.patch("missing", {"video_status": "generating"})

    def test_listeners_see_every_change(self):
        cache = SceneCache()
        seen: list[int] = []
        cache.subscribe(lambda c: seen.append(len(c)))

        cache.replace_all([scene_record(1), scene_record(2)])
        cache.remove("s2")
        cache.remove("s2")

        assert seen == [2, 1]

    def test_get_returns_copy(self):
        cache = SceneCache()
        cache.replace_all([scene_record(1)])

        cache.get("s1")["video_status"] = "done"

        assert cache.get("s1")["video_status"] == "pending"

    def test_cooldown_window(self, clock):
        cache = SceneCache(clock=clock)
        cache.replace_all([scene_record(1)])
        assert not cache.in_cooldown(5)

        cache.patch("s1", {"animation_prompt": "The moon rises"})
        clock.now += 4.9
        assert cache.in_cooldown(5)

        clock.now += 0.2
        assert not cache.in_cooldown(5)

    @pytest.mark.asyncio
    async def test_optimistic_rollback(self):
        cache = SceneCache()
        cache.replace_all([scene_record(1)])

        with pytest.raises(RuntimeError):
            async with cache.optimistic({"s1": {"video_status": "generating"}}):
                assert cache.get("s1")["video_status"] == "generating"
                raise RuntimeError("request failed")

        assert cache.get("s1")["video_status"] == "pending"

    @pytest.mark.asyncio
    async def test_rollback_keeps_sibling_mutations(self):
        cache = SceneCache()
        cache.replace_all([scene_record(1), scene_record(2)])
        release = asyncio.Event()

        async def failing():
            async with cache.optimistic({"s1": {"video_status": "generating"}}):
                await release.wait()
                raise RuntimeError("request failed")

        task = asyncio.create_task(failing())
        await asyncio.sleep(0)
        cache.patch("s2", {"video_status": "generating"})
        release.set()
        with pytest.raises(RuntimeError):
            await task

        assert cache.get("s1")["video_status"] == "pending"
        assert cache.get("s2")["video_status"] == "generating"


# =============================================================================
# Realtime notifications
# =============================================================================


class TestRealtime:
    """Tests for realtime-triggered refetches."""

    @pytest.mark.asyncio
    async def test_notification_refetches(self, reconciler, api, server):
        await load(reconciler, server, scene_record(1))
        server["s1"]["animation_prompt"] = "Edited elsewhere"

        assert await reconciler.handle_realtime("scene_updated", {"scene_id": "s1"}) is True
        assert reconciler.cache.get("s1")["animation_prompt"] == "Edited elsewhere"

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_refetch(self, reconciler, api, server, clock):
        await load(reconciler, server, scene_record(1))
        api.update_scene.return_value = scene_record(1, animation_prompt="Local edit")
        await reconciler.update_scene("s1", {"animation_prompt": "Local edit"})
        api.list_scenes.reset_mock()

        clock.now += 2
        assert await reconciler.handle_realtime("scene_updated", {"scene_id": "s1"}) is False
        api.list_scenes.assert_not_awaited()
        assert reconciler.cache.get("s1")["animation_prompt"] == "Local edit"

        clock.now += 10
        assert await reconciler.handle_realtime("scene_updated", {"scene_id": "s1"}) is True
        api.list_scenes.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refetches_once_cooldown_ends(self, reconciler, api, server, clock):
        await load(reconciler, server, scene_record(1))
        reconciler.mutation_cooldown = 0.05
        api.update_scene.return_value = scene_record(1, animation_prompt="Local edit")
        await reconciler.update_scene("s1", {"animation_prompt": "Local edit"})
        api.list_scenes.reset_mock()
        server["s1"]["animation_prompt"] = "Edited elsewhere"

        assert await reconciler.handle_realtime("scene_updated", {"scene_id": "s1"}) is False
        assert await reconciler.handle_realtime("scene_updated", {"scene_id": "s1"}) is False
        api.list_scenes.assert_not_awaited()

        clock.now += 1
        await wait_until(lambda: reconciler.cache.get("s1")["animation_prompt"] == "Edited elsewhere")
        api.list_scenes.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_follows_event_stream(self, reconciler, api, server):
        server["s1"] = scene_record(1)

        async def events(project_id):
            server["s1"]["animation_prompt"] = "Edited elsewhere"
            yield "scene_updated", {"scene_id": "s1"}
            await asyncio.Event().wait()

        api.stream_scene_events = events

        await reconciler.start(listen=True)

        await wait_until(lambda: reconciler.cache.get("s1")["animation_prompt"] == "Edited elsewhere")
        assert reconciler.listener is not None

    @pytest.mark.asyncio
    async def test_refetch_failure_is_quiet(self, reconciler, api, server):
        await load(reconciler, server, scene_record(1))
        api.list_scenes.side_effect = NetworkError("offline")

        assert await reconciler.handle_realtime("scene_updated", {}) is True
        assert reconciler.cache.get("s1") is not None


# =============================================================================
# Submission
# =============================================================================


class TestSubmitVideo:
    """Tests for SceneReconciler.submit_video."""

    @pytest.mark.asyncio
    async def test_success_keeps_optimistic_status(self, reconciler, api, server):
        await load(reconciler, server, scene_record(1))
        api.submit_video.return_value = {"success": True, "request_id": "abc"}

        assert await reconciler.submit_video("s1") is True

        api.submit_video.assert_awaited_once_with("s1", None)
        assert reconciler.cache.get("s1")["video_status"] == "generating"
        assert reconciler.poll_state is PollState.POLLING

    @pytest.mark.asyncio
    async def test_refetch_during_submit_keeps_scene_generating(self, reconciler, api, server):
        await load(reconciler, server, scene_record(1))
        entered = asyncio.Event()
        release = asyncio.Event()

        async def submit(scene_id, payload):
            entered.set()
            await release.wait()
            server[scene_id].update(video_status="generating", video_request_id="abc")
            return {"success": True, "request_id": "abc"}

        api.submit_video.side_effect = submit
        submitting = asyncio.create_task(reconciler.submit_video("s1"))
        await asyncio.wait_for(entered.wait(), timeout=1)

        # A fallback tick or realtime refetch sees the row before the job exists
        await reconciler.refresh()
        assert reconciler.cache.get("s1")["video_status"] == "pending"

        release.set()
        assert await submitting is True

        scene = reconciler.cache.get("s1")
        assert scene["video_status"] == "generating"
        assert scene["video_request_id"] == "abc"
        assert reconciler.poll_state is PollState.POLLING

    @pytest.mark.asyncio
    async def test_already_generating_is_not_resubmitted(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1, video_status="generating", video_request_id="abc"))

        assert await reconciler.submit_video("s1") is False

        api.submit_video.assert_not_awaited()
        assert notes == [("info", "Scene 1 is already generating")]

    @pytest.mark.asyncio
    async def test_api_error_refetches_server_state(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1))

        async def submit(scene_id, payload):
            server[scene_id].update(video_status="failed", video_error="fal.ai API error: 500")
            raise ApiError(502, "UPSTREAM_ERROR", "fal.ai API error: 500")

        api.submit_video.side_effect = submit

        assert await reconciler.submit_video("s1") is False

        assert reconciler.cache.get("s1")["video_status"] == "failed"
        assert notes == [("error", "Scene 1: fal.ai API error: 500")]
        assert reconciler.poll_state is PollState.IDLE

    @pytest.mark.asyncio
    async def test_api_error_rolls_back_when_refetch_fails(self, reconciler, api, server):
        await load(reconciler, server, scene_record(1))
        api.submit_video.side_effect = ApiError(409, "JOB_ALREADY_RUNNING", "busy")
        api.list_scenes.side_effect = NetworkError("offline")

        assert await reconciler.submit_video("s1") is False

        assert reconciler.cache.get("s1")["video_status"] == "pending"

    @pytest.mark.asyncio
    async def test_network_error_job_never_arrived(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1))
        api.submit_video.side_effect = NetworkError("connection reset")

        assert await reconciler.submit_video("s1") is False

        api.get_scene.assert_awaited_once_with("s1")
        assert reconciler.cache.get("s1")["video_status"] == "pending"
        assert notes[0][0] == "error"
        assert "could not reach the server" in notes[0][1]

    @pytest.mark.asyncio
    async def test_network_error_but_job_started(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1))

        async def submit(scene_id, payload):
            server[scene_id].update(video_status="generating", video_request_id="abc")
            raise NetworkError("response lost")

        api.submit_video.side_effect = submit

        assert await reconciler.submit_video("s1") is True

        scene = reconciler.cache.get("s1")
        assert scene["video_status"] == "generating"
        assert scene["video_request_id"] == "abc"
        assert notes == []

    @pytest.mark.asyncio
    async def test_network_error_and_recheck_fails(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1))
        api.submit_video.side_effect = NetworkError("connection reset")
        api.get_scene.side_effect = NetworkError("still offline")

        assert await reconciler.submit_video("s1") is False
        assert reconciler.cache.get("s1")["video_status"] == "pending"
        assert [level for level, _ in notes] == ["error"]

    @pytest.mark.asyncio
    async def test_unknown_scene(self, reconciler):
        with pytest.raises(KeyError):
            await reconciler.submit_video("missing")


class TestGenerateAll:
    """Tests for SceneReconciler.generate_all."""

    @pytest.mark.asyncio
    async def test_failures_are_independent(self, reconciler, api, server, notes):
        await load(
            reconciler,
            server,
            scene_record(1),
            scene_record(2, video_status="failed", video_error="boom"),
            scene_record(3, image_url=None),
            scene_record(4, video_status="done", video_request_id="old", video_url="https://v/4.mp4"),
            scene_record(5),
        )

        async def submit(scene_id, payload):
            if scene_id == "s2":
                raise ApiError(502, "UPSTREAM_ERROR", "fal.ai API error: 500")
            server[scene_id].update(video_status="generating", video_request_id=f"req-{scene_id}")
            return {"success": True, "request_id": f"req-{scene_id}"}

        api.submit_video.side_effect = submit

        outcome = await reconciler.generate_all()

        assert outcome == {"s1": True, "s2": False, "s5": True}
        assert [call.args[0] for call in api.submit_video.await_args_list] == ["s1", "s2", "s5"]
        assert reconciler.cache.get("s1")["video_status"] == "generating"
        assert reconciler.cache.get("s5")["video_status"] == "generating"
        assert reconciler.cache.get("s2")["video_status"] == "failed"
        assert notes[-1] == ("info", "Started video generation for 2 of 3 scenes")

    @pytest.mark.asyncio
    async def test_nothing_ready(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1, image_url=None))

        assert await reconciler.generate_all() == {}

        api.submit_video.assert_not_awaited()
        assert notes == [("info", "No scenes ready for video generation")]


# =============================================================================
# Fallback polling
# =============================================================================


class TestFallbackPolling:
    """Tests for the poll state machine and poll cycles."""

    @pytest.mark.asyncio
    async def test_state_follows_generating_count(self, reconciler, server):
        assert reconciler.poll_state is PollState.IDLE

        await load(reconciler, server, scene_record(1, video_status="generating", video_request_id="abc"))
        assert reconciler.poll_state is PollState.POLLING

        server["s1"].update(video_status="done", video_url="https://v/1.mp4")
        await reconciler.refresh()
        assert reconciler.poll_state is PollState.IDLE

    @pytest.mark.asyncio
    async def test_poll_tick_completes_and_stops(self, reconciler, api, server, notes):
        reconciler.poll_interval = 0.01

        async def poll(project_id):
            server["s1"].update(video_status="done", video_url="https://v/1.mp4")
            return {
                "success": True,
                "updates": [
                    {"scene_id": "s1", "scene_number": 1, "status": "done", "video_url": "https://v/1.mp4"}
                ],
                "still_generating": 0,
            }

        api.poll_videos.side_effect = poll
        await load(reconciler, server, scene_record(1, video_status="generating", video_request_id="abc"))

        await wait_until(lambda: reconciler.poll_state is PollState.IDLE)

        assert notes == [("success", "Scene 1 video is ready")]
        assert reconciler.cache.get("s1")["video_status"] == "done"
        api.poll_videos.assert_awaited_once_with("p1")

    @pytest.mark.asyncio
    async def test_poll_errors_keep_polling(self, reconciler, api, server):
        reconciler.poll_interval = 0.01
        api.poll_videos.side_effect = NetworkError("offline")

        await load(reconciler, server, scene_record(1, video_status="generating", video_request_id="abc"))

        await wait_until(lambda: api.poll_videos.await_count >= 2)
        assert reconciler.poll_state is PollState.POLLING

    @pytest.mark.asyncio
    async def test_failed_update_is_announced(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(2))
        api.poll_videos.return_value = {
            "updates": [{"scene_id": "s2", "scene_number": 2, "status": "failed", "error": "boom"}],
            "still_generating": 0,
        }

        await reconciler.poll_once()

        assert notes == [("error", "Scene 2 video failed: boom")]


# =============================================================================
# Cancel and edits
# =============================================================================


class TestCancelAndEdit:
    """Tests for cancel_video and update_scene."""

    @pytest.mark.asyncio
    async def test_cancel_sends_cached_request_id(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1, video_status="generating", video_request_id="abc"))
        api.cancel_video.return_value = {"success": True, "message": "Video generation cancelled"}

        assert await reconciler.cancel_video("s1") is True

        api.cancel_video.assert_awaited_once_with("s1", "abc")
        scene = reconciler.cache.get("s1")
        assert scene["video_status"] == "pending"
        assert scene["video_request_id"] is None
        assert reconciler.poll_state is PollState.IDLE
        assert notes == [("info", "Scene 1 video cancelled")]

    @pytest.mark.asyncio
    async def test_cancel_failure_rolls_back(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1, video_status="generating", video_request_id="abc"))
        api.cancel_video.side_effect = ApiError(500, "INTERNAL_ERROR", "boom")

        assert await reconciler.cancel_video("s1") is False

        assert reconciler.cache.get("s1")["video_status"] == "generating"
        assert notes[0][0] == "error"

    @pytest.mark.asyncio
    async def test_update_scene_uses_server_copy(self, reconciler, api, server):
        await load(reconciler, server, scene_record(1))
        api.update_scene.return_value = scene_record(1, animation_prompt="The moon rises")

        assert await reconciler.update_scene("s1", {"animation_prompt": "The moon rises"}) is True

        api.update_scene.assert_awaited_once_with("s1", {"animation_prompt": "The moon rises"})
        assert reconciler.cache.get("s1")["animation_prompt"] == "The moon rises"

    @pytest.mark.asyncio
    async def test_update_scene_failure_rolls_back(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1))
        api.update_scene.side_effect = NetworkError("offline")

        assert await reconciler.update_scene("s1", {"animation_prompt": "The moon rises"}) is False

        assert reconciler.cache.get("s1")["animation_prompt"] == "The star pulses softly"
        assert notes[0][0] == "error"


# =============================================================================
# Still images
# =============================================================================


class TestGenerateImage:
    """Tests for SceneReconciler.generate_image."""

    @pytest.mark.asyncio
    async def test_success_stores_image(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1, image_url=None, image_status="pending"))
        api.generate_scene_image.return_value = {"success": True, "image_url": "https://img/1.png"}

        assert await reconciler.generate_image("s1") is True

        scene = reconciler.cache.get("s1")
        assert scene["image_status"] == "done"
        assert scene["image_url"] == "https://img/1.png"
        assert notes == [("success", "Scene 1 image is ready")]

    @pytest.mark.asyncio
    async def test_api_error_refetches_failed_status(self, reconciler, api, server, notes):
        await load(reconciler, server, scene_record(1, image_status="done"))

        async def generate(scene_id):
            server[scene_id]["image_status"] = "failed"
            raise ApiError(502, "UPSTREAM_ERROR", "Image API error: 500")

        api.generate_scene_image.side_effect = generate

        assert await reconciler.generate_image("s1") is False

        assert reconciler.cache.get("s1")["image_status"] == "failed"
        assert notes == [("error", "Scene 1 image failed: Image API error: 500")]

    @pytest.mark.asyncio
    async def test_network_error_rolls_back(self, reconciler, api, server):
        await load(reconciler, server, scene_record(1, image_status="done"))
        api.generate_scene_image.side_effect = NetworkError("offline")

        assert await reconciler.generate_image("s1") is False
        assert reconciler.cache.get("s1")["image_status"] == "done"
