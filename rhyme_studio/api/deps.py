from typing import Annotated
from uuid import UUID

import httpx
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rhyme_studio.config import Settings, get_settings
from rhyme_studio.exceptions import ProjectNotFoundError, ResourceNotFoundError
from rhyme_studio.models.character import Character
from rhyme_studio.models.database import get_db
from rhyme_studio.models.project import Project
from rhyme_studio.services.change_feed import SceneChangeFeed, scene_change_feed
from rhyme_studio.services.image_provider import FalImageClient
from rhyme_studio.services.image_service import ImageService
from rhyme_studio.services.scene_store import SceneStore
from rhyme_studio.services.video_job_service import VideoJobService
from rhyme_studio.services.video_provider import FalVideoClient

DbSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def get_change_feed() -> SceneChangeFeed:
    return scene_change_feed


def get_upstream_transport() -> httpx.AsyncBaseTransport | None:
    """Transport for outbound AI API calls; None uses httpx's default."""
    return None


ChangeFeed = Annotated[SceneChangeFeed, Depends(get_change_feed)]
UpstreamTransport = Annotated[httpx.AsyncBaseTransport | None, Depends(get_upstream_transport)]


def get_video_provider(settings: AppSettings, transport: UpstreamTransport) -> FalVideoClient:
    return FalVideoClient.from_settings(settings, transport=transport)


VideoProvider = Annotated[FalVideoClient, Depends(get_video_provider)]


def get_scene_store(db: DbSession, feed: ChangeFeed) -> SceneStore:
    return SceneStore(db, feed=feed)


def get_video_job_service(
    db: DbSession,
    provider: VideoProvider,
    settings: AppSettings,
    feed: ChangeFeed,
) -> VideoJobService:
    return VideoJobService(db, provider, settings=settings, feed=feed)


def get_image_service(
    db: DbSession,
    settings: AppSettings,
    transport: UpstreamTransport,
    feed: ChangeFeed,
) -> ImageService:
    provider = FalImageClient.from_settings(settings, transport=transport)
    return ImageService(db, provider, settings=settings, feed=feed)


Scenes = Annotated[SceneStore, Depends(get_scene_store)]
VideoJobs = Annotated[VideoJobService, Depends(get_video_job_service)]
Images = Annotated[ImageService, Depends(get_image_service)]


async def get_project_or_404(project_id: UUID, db: AsyncSession) -> Project:
    project = await db.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project


async def get_character_or_404(project_id: UUID, character_id: UUID, db: AsyncSession) -> Character:
    character = await db.get(Character, character_id)
    if character is None or character.project_id != project_id:
        raise ResourceNotFoundError(f"Character not found: {character_id}", code="NOT_FOUND")
    return character
