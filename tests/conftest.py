"""
Pytest fixtures for Rhyme Studio tests.

Database tests run against a throwaway SQLite file (aiosqlite). A file is
used instead of :memory: so several sessions can work on the same data,
which the concurrent poller tests rely on.

Upstream AI services are replaced by httpx.MockTransport handlers; nothing
here talks to the network.
"""

import asyncio
import json
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from rhyme_studio.config import Settings
from rhyme_studio.models import Base, Project, Scene
from rhyme_studio.services.change_feed import SceneChangeFeed
from rhyme_studio.services.video_provider import FalVideoClient


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        fal_api_key="test-fal-key",
        openai_api_key="test-openai-key",
    )


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'rhyme_studio_test.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def feed() -> SceneChangeFeed:
    return SceneChangeFeed()


@pytest_asyncio.fixture
async def project(db) -> Project:
    project = Project(
        name="Twinkle Twinkle",
        audio_url="https://cdn.example.com/twinkle.mp3",
        timestamps=[
            {"start": 0.0, "end": 4.2, "text": "Twinkle twinkle little star"},
            {"start": 4.2, "end": 8.9, "text": "How I wonder what you are"},
        ],
        style_direction="felt puppets",
    )
    db.add(project)
    await db.commit()
    await db.refresh(project)
    return project


async def make_scene(db: AsyncSession, project: Project, number: int = 1, **fields) -> Scene:
    values = {
        "scene_number": number,
        "start_time": 0.0,
        "end_time": 4.2,
        "lyric_snippet": "Twinkle twinkle little star",
        "scene_description": "A felt star glows over a sleeping village",
        "shot_type": "wide",
        "animation_prompt": "The star pulses softly",
        "image_url": f"https://cdn.example.com/scene-{number}.png",
        "image_status": "done",
        "video_status": "pending",
        "video_status_updated_at": datetime.now(timezone.utc),
    }
    values.update(fields)
    scene = Scene(project_id=project.id, **values)
    db.add(scene)
    await db.commit()
    await db.refresh(scene)
    return scene


@pytest_asyncio.fixture
async def scene(db, project) -> Scene:
    return await make_scene(db, project)


# =============================================================================
# fal.ai queue fake
# =============================================================================


class FakeFalQueue:
    """Scriptable stand-in for the fal.ai queue API.

    Job states live in ``statuses`` / ``results`` keyed by request id.
    ``errors`` maps an operation (submit, status, result, cancel) to an
    exception raised instead of answering.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.next_request_id = "abc"
        self.statuses: dict[str, dict] = {}
        self.results: dict[str, dict] = {}
        self.errors: dict[str, Exception] = {}
        self.error_responses: dict[str, httpx.Response] = {}
        # Hold status answers until this many status calls are in flight
        self.status_barrier_parties: int | None = None
        self._status_waiting = 0
        self._status_release = asyncio.Event()

    @staticmethod
    def operation(request: httpx.Request) -> str:
        path = request.url.path
        if request.method == "POST":
            return "submit"
        if path.endswith("/cancel"):
            return "cancel"
        if path.endswith("/status"):
            return "status"
        return "result"

    def calls(self, operation: str) -> list[httpx.Request]:
        return [r for r in self.requests if self.operation(r) == operation]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        op = self.operation(request)
        if op in self.errors:
            raise self.errors[op]
        if op in self.error_responses:
            return self.error_responses[op]

        if op == "submit":
            return httpx.Response(200, json={"request_id": self.next_request_id})

        request_id = request.url.path.split("/requests/")[1].split("/")[0]
        if op == "status":
            if self.status_barrier_parties:
                self._status_waiting += 1
                if self._status_waiting >= self.status_barrier_parties:
                    self._status_release.set()
                await self._status_release.wait()
            return httpx.Response(200, json=self.statuses.get(request_id, {"status": "IN_QUEUE"}))
        if op == "result":
            return httpx.Response(200, json=self.results.get(request_id, {}))
        return httpx.Response(200, json={"status": "CANCELLATION_REQUESTED"})

    def complete(self, request_id: str, video_url: str) -> None:
        self.statuses[request_id] = {"status": "COMPLETED"}
        self.results[request_id] = {"video": {"url": video_url}}

    def fail(self, request_id: str, error: str | None = None) -> None:
        self.statuses[request_id] = {"status": "FAILED", "error": error}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fal() -> FakeFalQueue:
    return FakeFalQueue()


@pytest.fixture
def fal_client(fal, settings) -> FalVideoClient:
    return FalVideoClient.from_settings(settings, transport=fal.transport)


# =============================================================================
# fal.ai image models fake
# =============================================================================


class FakeFalImages:
    """Stand-in for synchronous fal.ai image models.

    Every call answers with a fresh hosted URL unless ``error`` (an
    exception to raise) or ``error_response`` is set.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.error: Exception | None = None
        self.error_response: httpx.Response | None = None

    def models(self) -> list[str]:
        return [r.url.path.lstrip("/") for r in self.requests]

    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.error_response is not None:
            return self.error_response
        url = f"https://v3.fal.media/files/image-{len(self.requests)}.png"
        return httpx.Response(200, json={"images": [{"url": url, "width": 1024, "height": 576}]})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fal_images() -> FakeFalImages:
    return FakeFalImages()


def openai_transport(content: str | dict, usage: dict | None = None, status_code: int = 200):
    """MockTransport answering chat completions with a fixed message."""
    captured: list[httpx.Request] = []
    if isinstance(content, dict):
        content = json.dumps(content)

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        if status_code != 200:
            return httpx.Response(status_code, text="rate limited")
        body = {"choices": [{"message": {"role": "assistant", "content": content}}]}
        if usage is not None:
            body["usage"] = usage
        return httpx.Response(200, json=body)

    return httpx.MockTransport(handler), captured


@pytest.fixture
def scene_factory(db, project):
    async def factory(number: int = 1, **fields) -> Scene:
        return await make_scene(db, project, number, **fields)

    return factory


@pytest.fixture
def openai_mock():
    return openai_transport
