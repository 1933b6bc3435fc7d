import logging
from uuid import UUID

from fastapi import APIRouter

from rhyme_studio.api.deps import AppSettings, ChangeFeed, DbSession, UpstreamTransport, get_project_or_404
from rhyme_studio.exceptions import MissingRequiredFieldError
from rhyme_studio.schemas.storyboard import (
    RewritePromptRequest,
    RewritePromptResponse,
    StoryboardResponse,
    TranscribeRequest,
    TranscriptionResult,
)
from rhyme_studio.services.prompt_rewriter import rewrite_prompt
from rhyme_studio.services.storyboard_service import StoryboardService
from rhyme_studio.services.transcription_service import TranscriptionService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/projects/{project_id}/transcribe", response_model=TranscriptionResult)
async def transcribe_project_audio(
    project_id: UUID,
    db: DbSession,
    settings: AppSettings,
    transport: UpstreamTransport,
    request: TranscribeRequest | None = None,
) -> TranscriptionResult:
    """Transcribe the song and store the lyrics and timed lines on the project."""
    project = await get_project_or_404(project_id, db)
    audio_url = (request.audio_url if request else None) or project.audio_url
    if not audio_url:
        raise MissingRequiredFieldError("audio_url")

    result = await TranscriptionService(settings, transport=transport).transcribe(audio_url)

    project.audio_url = audio_url
    project.lyrics = result.text
    project.timestamps = [entry.model_dump() for entry in result.timestamps]
    await db.commit()
    logger.info(f"Stored {len(result.timestamps)} timed lines for project {project_id}")
    return result


@router.post("/projects/{project_id}/storyboard", response_model=StoryboardResponse)
async def generate_storyboard(
    project_id: UUID,
    db: DbSession,
    settings: AppSettings,
    feed: ChangeFeed,
    transport: UpstreamTransport,
) -> StoryboardResponse:
    """Replace the project's scenes with a freshly generated storyboard."""
    service = StoryboardService(db, settings=settings, feed=feed, transport=transport)
    return await service.generate(project_id)


@router.post("/prompts/rewrite", response_model=RewritePromptResponse)
async def rewrite_scene_prompt(
    request: RewritePromptRequest,
    settings: AppSettings,
    transport: UpstreamTransport,
) -> RewritePromptResponse:
    rewritten = await rewrite_prompt(request, settings=settings, transport=transport)
    return RewritePromptResponse(rewritten_prompt=rewritten)
