import logging
from collections.abc import AsyncGenerator
from uuid import UUID

from fastapi import APIRouter, Request, status
from fastapi.responses import StreamingResponse

from rhyme_studio.api.deps import ChangeFeed, DbSession, Scenes, get_project_or_404
from rhyme_studio.schemas.scene import SceneResponse, SceneUpdate
from rhyme_studio.services.change_feed import SceneChangeFeed

logger = logging.getLogger(__name__)

router = APIRouter()

# Seconds between SSE keepalive comments on an idle stream
SSE_HEARTBEAT_SECONDS = 15.0


@router.get("/projects/{project_id}/scenes", response_model=list[SceneResponse])
async def list_scenes(project_id: UUID, db: DbSession, scenes: Scenes) -> list[SceneResponse]:
    """List a project's scenes ordered by scene number."""
    await get_project_or_404(project_id, db)
    return [SceneResponse.model_validate(s) for s in await scenes.list_for_project(project_id)]


async def _scene_event_stream(
    request: Request, feed: SceneChangeFeed, project_id: UUID
) -> AsyncGenerator[str, None]:
    subscription = feed.subscribe(project_id, heartbeat=SSE_HEARTBEAT_SECONDS)
    try:
        yield "event: connected\ndata: {}\n\n"
        async for event in subscription:
            if await request.is_disconnected():
                break
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield event.to_sse()
    finally:
        await subscription.aclose()


@router.get("/projects/{project_id}/scenes/events")
async def stream_scene_events(
    project_id: UUID,
    request: Request,
    db: DbSession,
    feed: ChangeFeed,
) -> StreamingResponse:
    """Server-Sent Events stream of scene inserts, updates and deletes.

    Delivery is best effort; clients should keep polling while any scene is
    generating.
    """
    await get_project_or_404(project_id, db)
    return StreamingResponse(
        _scene_event_stream(request, feed, project_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/scenes/{scene_id}", response_model=SceneResponse)
async def get_scene(scene_id: UUID, scenes: Scenes) -> SceneResponse:
    return SceneResponse.model_validate(await scenes.get(scene_id))


@router.patch("/scenes/{scene_id}", response_model=SceneResponse)
async def update_scene(scene_id: UUID, update: SceneUpdate, scenes: Scenes) -> SceneResponse:
    """Edit storyboard fields. Video job fields are managed by the video endpoints."""
    scene = await scenes.get(scene_id)
    scene = await scenes.update_fields(scene, update.model_dump(exclude_unset=True))
    return SceneResponse.model_validate(scene)


@router.delete("/scenes/{scene_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_scene(scene_id: UUID, scenes: Scenes) -> None:
    scene = await scenes.get(scene_id)
    await scenes.delete(scene)
    logger.info(f"Deleted scene {scene_id}")
