import logging
from uuid import UUID

from fastapi import APIRouter

from rhyme_studio.api.deps import VideoJobs
from rhyme_studio.schemas.video import (
    CancelVideoRequest,
    CancelVideoResponse,
    GenerateVideoRequest,
    GenerateVideoResponse,
    PollVideoStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/scenes/{scene_id}/video", response_model=GenerateVideoResponse)
async def generate_scene_video(
    scene_id: UUID,
    request: GenerateVideoRequest,
    service: VideoJobs,
) -> GenerateVideoResponse:
    """Queue an image-to-video job for a scene.

    Returns as soon as the job is accepted upstream; completion is picked
    up by the poll endpoint.
    """
    request_id = await service.submit(scene_id, request)
    return GenerateVideoResponse(scene_id=scene_id, request_id=request_id, model=service.model)


@router.post("/projects/{project_id}/video/poll", response_model=PollVideoStatusResponse)
async def poll_video_status(
    project_id: UUID,
    service: VideoJobs,
) -> PollVideoStatusResponse:
    """Reconcile the project's generating scenes with the video API."""
    outcome = await service.poll(project_id)
    return PollVideoStatusResponse(
        updates=outcome.updates,
        model=service.model,
        still_generating=outcome.still_generating,
        message=None if outcome.updates or outcome.still_generating else "No videos currently generating",
    )


@router.post("/scenes/{scene_id}/video/cancel", response_model=CancelVideoResponse)
async def cancel_video_generation(
    scene_id: UUID,
    service: VideoJobs,
    request: CancelVideoRequest | None = None,
) -> CancelVideoResponse:
    """Cancel a scene's video job. The scene is always reset to pending."""
    upstream_cancelled = await service.cancel(scene_id, request.request_id if request else None)
    return CancelVideoResponse(scene_id=scene_id, upstream_cancelled=upstream_cancelled)
