"""Video job lifecycle: submit, poll and cancel.

A scene moves pending/failed/done -> generating on submission, generating ->
done | failed when the poller observes a terminal upstream state, generating
-> pending when a job is stuck, and any -> pending on cancellation. Every
transition is a conditional write through SceneStore, so concurrent poll
cycles (or a cancel racing a completion) apply each outcome at most once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from rhyme_studio.config import Settings, get_settings
from rhyme_studio.exceptions import (
    ConfigurationError,
    JobAlreadyRunningError,
    MissingRequiredFieldError,
    ProjectNotFoundError,
    UpstreamError,
    ValidationError,
)
from rhyme_studio.models.project import Project
from rhyme_studio.models.scene import GENERATING, Scene
from rhyme_studio.schemas.video import GenerateVideoRequest, SceneJobUpdate
from rhyme_studio.services.change_feed import SceneChangeFeed
from rhyme_studio.services.cost_ledger import VIDEO_SERVICE, CostLedger
from rhyme_studio.services.motion_prompt import compose_motion_prompt
from rhyme_studio.services.scene_store import SceneStore, as_utc, utcnow
from rhyme_studio.services.video_provider import COMPLETED, FAILED, FalVideoClient

logger = logging.getLogger(__name__)

STUCK_JOB_ERROR = "Generation timed out — please retry"
DEFAULT_FAILURE_ERROR = "Video generation failed"


@dataclass
class PollOutcome:
    updates: list[SceneJobUpdate] = field(default_factory=list)
    still_generating: int = 0


class VideoJobService:
    def __init__(
        self,
        db: AsyncSession,
        provider: FalVideoClient,
        settings: Settings | None = None,
        feed: SceneChangeFeed | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.provider = provider
        self.settings = settings or get_settings()
        self.clock = clock
        self.store = SceneStore(db, feed=feed, clock=clock)
        self.ledger = CostLedger(db)

    @property
    def model(self) -> str:
        return self.settings.video_model_endpoint

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(self, scene_id: UUID, request: GenerateVideoRequest) -> str:
        """Queue a video job for a scene and mark it generating.

        Returns:
            The upstream request id

        Raises:
            JobAlreadyRunningError: The scene already has an outstanding job
            MissingRequiredFieldError: No source image is available
            UpstreamError: The video API rejected the job or was unreachable;
                the scene is left failed with the error message
        """
        scene = await self.store.get(scene_id)
        if request.project_id is not None and request.project_id != scene.project_id:
            raise ValidationError(f"Scene {scene_id} does not belong to project {request.project_id}")
        if scene.video_status == GENERATING:
            raise JobAlreadyRunningError(scene_id)

        image_url = request.image_url or scene.image_url
        if not image_url:
            raise MissingRequiredFieldError("image_url")

        prompt = compose_motion_prompt(
            request.animation_prompt
            or scene.animation_prompt
            or request.scene_description
            or scene.scene_description,
            shot_type=request.shot_type or scene.shot_type,
            animation_direction=await self._animation_direction(scene, request),
        )
        logger.info(f"Submitting video job for scene {scene.scene_number} ({scene_id})")

        try:
            request_id = await self.provider.submit(
                prompt,
                image_url,
                duration=self.settings.video_clip_duration,
                resolution=self.settings.video_resolution,
                fps=self.settings.video_fps,
            )
        except UpstreamError as e:
            logger.error(f"Video submission failed for scene {scene_id}: {e.message}")
            await self.store.mark_failed(scene_id, e.message)
            raise

        if not await self.store.mark_generating(scene_id, request_id):
            # Another submission got there first; do not leave an orphan job running
            logger.warning(
                f"Scene {scene_id} became generating during submission; cancelling job {request_id}"
            )
            await self._cancel_upstream(request_id)
            raise JobAlreadyRunningError(scene_id)

        return request_id

    async def _animation_direction(self, scene: Scene, request: GenerateVideoRequest) -> str | None:
        if request.animation_direction is not None:
            return request.animation_direction
        project = await self.db.get(Project, scene.project_id)
        if project is None:
            raise ProjectNotFoundError(scene.project_id)
        return project.animation_direction

    # =========================================================================
    # Polling
    # =========================================================================

    async def poll(self, project_id: UUID) -> PollOutcome:
        """Reconcile every generating scene of a project with upstream state.

        Scenes are handled independently: a failed status query leaves that
        scene untouched for the next cycle.
        """
        scenes = await self.store.list_generating(project_id)
        outcome = PollOutcome()

        for scene in scenes:
            try:
                update = await self._reconcile(scene)
            except UpstreamError as e:
                logger.warning(
                    f"Status check failed for scene {scene.scene_number}, retrying next cycle: {e.message}"
                )
                continue
            except ConfigurationError:
                raise
            except Exception:
                logger.exception(f"Unexpected error polling scene {scene.id}")
                await self.db.rollback()
                continue
            if update is not None:
                outcome.updates.append(update)

        outcome.still_generating = len(await self.store.list_generating(project_id))
        logger.info(
            f"Poll for project {project_id}: {len(scenes)} checked, "
            f"{len(outcome.updates)} updated, {outcome.still_generating} still generating"
        )
        return outcome

    def _is_stuck(self, scene: Scene) -> bool:
        stamp = scene.video_status_updated_at or scene.updated_at
        if stamp is None:
            return False
        age = self.clock() - as_utc(stamp)
        return age > timedelta(seconds=self.settings.stuck_job_timeout_seconds)

    async def _reconcile(self, scene: Scene) -> SceneJobUpdate | None:
        request_id = scene.video_request_id

        # Staleness wins: a stuck job is reset without asking upstream
        if self._is_stuck(scene):
            if not await self.store.reset_to_pending(
                scene.id, STUCK_JOB_ERROR, expected=GENERATING, request_id=request_id
            ):
                return None
            logger.warning(f"Scene {scene.scene_number} stuck generating; reset to pending")
            return SceneJobUpdate(
                scene_id=scene.id,
                scene_number=scene.scene_number,
                status="failed",
                error=STUCK_JOB_ERROR,
            )

        status = await self.provider.get_status(request_id)

        if status.status == COMPLETED:
            video_url = await self.provider.get_result(request_id)
            if not video_url:
                logger.warning(f"Job {request_id} completed without a video URL; checking again next cycle")
                return None
            if not await self.store.mark_done(scene.id, request_id, video_url):
                logger.info(f"Completion of job {request_id} already applied")
                return None
            await self.ledger.log(
                scene.project_id,
                VIDEO_SERVICE,
                f"Video clip scene {scene.scene_number}",
                self.settings.video_cost_per_clip,
            )
            logger.info(f"Scene {scene.scene_number} video done")
            return SceneJobUpdate(
                scene_id=scene.id,
                scene_number=scene.scene_number,
                status="done",
                video_url=video_url,
            )

        if status.status == FAILED:
            error = status.error or DEFAULT_FAILURE_ERROR
            if not await self.store.mark_failed(scene.id, error, request_id=request_id):
                return None
            logger.warning(f"Scene {scene.scene_number} video failed: {error}")
            return SceneJobUpdate(
                scene_id=scene.id,
                scene_number=scene.scene_number,
                status="failed",
                error=error,
            )

        # IN_QUEUE / IN_PROGRESS
        return None

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel(self, scene_id: UUID, request_id: str | None = None) -> bool:
        """Reset a scene to pending, cancelling its upstream job if one is known.

        Returns:
            Whether the upstream cancel call was acknowledged. The local
            reset happens either way.
        """
        scene = await self.store.get(scene_id)
        job_id = request_id or scene.video_request_id

        upstream_cancelled = False
        if job_id:
            upstream_cancelled = await self._cancel_upstream(job_id)

        await self.store.reset_to_pending(scene_id)
        logger.info(f"Scene {scene.scene_number} video reset to pending")
        return upstream_cancelled

    async def _cancel_upstream(self, request_id: str) -> bool:
        try:
            await self.provider.cancel(request_id)
        except (UpstreamError, ConfigurationError) as e:
            logger.warning(f"Could not cancel fal.ai request {request_id}: {e.message}")
            return False
        return True
