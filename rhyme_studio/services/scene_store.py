"""Scene record store.

All writes to the video job columns go through ``transition()``, an atomic
``UPDATE ... WHERE id = :id AND video_status <matches>`` whose affected row
count tells the caller whether the write took effect. Still image status
writes use the same guard on ``image_status`` through ``image_transition()``.
Every committed write is published on the scene change feed.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rhyme_studio.exceptions import SceneNotFoundError
from rhyme_studio.models.scene import DONE, FAILED, GENERATING, PENDING, Scene
from rhyme_studio.schemas.scene import SceneResponse
from rhyme_studio.services.change_feed import (
    SCENE_DELETED,
    SCENE_INSERTED,
    SCENE_UPDATED,
    SceneChangeFeed,
    scene_change_feed,
)

logger = logging.getLogger(__name__)

# Columns owned by the image and video jobs; generic scene edits may not touch them
JOB_FIELDS = frozenset(
    {
        "image_status",
        "video_status",
        "video_request_id",
        "video_url",
        "video_error",
        "video_status_updated_at",
    }
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _statuses(value: str | Iterable[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def check_job_fields(values: dict[str, Any]) -> None:
    """Reject a write that would leave the job columns inconsistent."""
    status = values.get("video_status")
    if status == GENERATING and not values.get("video_request_id"):
        raise ValueError("a generating scene needs a video_request_id")
    if status == DONE and not values.get("video_url"):
        raise ValueError("a done scene needs a video_url")
    if status == PENDING and (values.get("video_request_id") or values.get("video_url")):
        raise ValueError("a pending scene cannot keep a video_request_id or video_url")


class SceneStore:
    def __init__(
        self,
        db: AsyncSession,
        feed: SceneChangeFeed | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.feed = feed or scene_change_feed
        self.clock = clock

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, scene_id: UUID) -> Scene:
        scene = await self.db.get(Scene, scene_id, populate_existing=True)
        if scene is None:
            raise SceneNotFoundError(scene_id)
        return scene

    async def list_for_project(self, project_id: UUID) -> list[Scene]:
        result = await self.db.execute(
            select(Scene)
            .where(Scene.project_id == project_id)
            .order_by(Scene.scene_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_generating(self, project_id: UUID | None = None) -> list[Scene]:
        """Scenes with an outstanding job, optionally limited to one project."""
        query = select(Scene).where(
            Scene.video_status == GENERATING,
            Scene.video_request_id.isnot(None),
        )
        if project_id is not None:
            query = query.where(Scene.project_id == project_id)
        result = await self.db.execute(
            query.order_by(Scene.scene_number).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Conditional write
    # -------------------------------------------------------------------------

    async def transition(
        self,
        scene_id: UUID,
        values: dict[str, Any],
        *,
        expected: str | Iterable[str] | None = None,
        unless: str | Iterable[str] | None = None,
        request_id: str | None = None,
    ) -> bool:
        """Write job columns if the current video_status matches.

        Args:
            scene_id: Scene to update
            values: Column values to set; video_status_updated_at is stamped
            expected: Only write when the current status is one of these
            unless: Only write when the current status is none of these
            request_id: Only write while this job is the one on the row

        Returns:
            True if the row was updated, False if the status guard (or a
            missing row) made the write a no-op
        """
        check_job_fields(values)
        values = {**values, "video_status_updated_at": self.clock()}
        guards = [Scene.video_request_id == request_id] if request_id is not None else []
        return await self._conditional_update(
            scene_id, Scene.video_status, values, expected=expected, unless=unless, guards=guards
        )

    async def image_transition(
        self,
        scene_id: UUID,
        values: dict[str, Any],
        *,
        expected: str | Iterable[str] | None = None,
        unless: str | Iterable[str] | None = None,
    ) -> bool:
        """Write still image columns if the current image_status matches."""
        if values.get("image_status") == DONE and not values.get("image_url"):
            raise ValueError("a done image needs an image_url")
        return await self._conditional_update(
            scene_id, Scene.image_status, values, expected=expected, unless=unless
        )

    async def _conditional_update(
        self,
        scene_id: UUID,
        status_column: Any,
        values: dict[str, Any],
        *,
        expected: str | Iterable[str] | None,
        unless: str | Iterable[str] | None,
        guards: Sequence[Any] = (),
    ) -> bool:
        stmt = update(Scene).where(Scene.id == scene_id, *guards)
        if expected is not None:
            stmt = stmt.where(status_column.in_(_statuses(expected)))
        if unless is not None:
            stmt = stmt.where(status_column.not_in(_statuses(unless)))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            logger.info(
                f"Conditional {status_column.key} write on scene {scene_id} matched no rows "
                f"(expected={expected}, unless={unless})"
            )
            return False

        scene = await self.get(scene_id)
        await self._publish(SCENE_UPDATED, scene)
        return True

    async def mark_generating(self, scene_id: UUID, request_id: str) -> bool:
        return await self.transition(
            scene_id,
            {
                "video_status": GENERATING,
                "video_request_id": request_id,
                "video_url": None,
                "video_error": None,
            },
            unless=GENERATING,
        )

    async def mark_done(self, scene_id: UUID, request_id: str, video_url: str) -> bool:
        # The request id stays on the row for traceability
        return await self.transition(
            scene_id,
            {
                "video_status": DONE,
                "video_request_id": request_id,
                "video_url": video_url,
                "video_error": None,
            },
            expected=GENERATING,
            request_id=request_id,
        )

    async def mark_failed(self, scene_id: UUID, error: str, *, request_id: str | None = None) -> bool:
        """Record a failure.

        With a request id this is a poll result and only applies while that
        job is still generating on the row. Without one it is a submission
        failure and applies unless another submission has since won.
        """
        values = {"video_status": FAILED, "video_error": error}
        if request_id is not None:
            return await self.transition(
                scene_id, values, expected=GENERATING, request_id=request_id
            )
        return await self.transition(scene_id, values, unless=GENERATING)

    async def reset_to_pending(
        self,
        scene_id: UUID,
        error: str | None = None,
        *,
        expected: str | Iterable[str] | None = None,
        request_id: str | None = None,
    ) -> bool:
        return await self.transition(
            scene_id,
            {
                "video_status": PENDING,
                "video_request_id": None,
                "video_url": None,
                "video_error": error,
            },
            expected=expected,
            request_id=request_id,
        )

    # -------------------------------------------------------------------------
    # Still image
    # -------------------------------------------------------------------------

    async def mark_image_generating(self, scene_id: UUID) -> bool:
        return await self.image_transition(
            scene_id, {"image_status": GENERATING}, unless=GENERATING
        )

    async def mark_image_done(self, scene_id: UUID, image_url: str) -> bool:
        return await self.image_transition(
            scene_id, {"image_status": DONE, "image_url": image_url}, expected=GENERATING
        )

    async def mark_image_failed(self, scene_id: UUID) -> bool:
        # A previous image_url stays usable
        return await self.image_transition(scene_id, {"image_status": FAILED}, expected=GENERATING)

    # -------------------------------------------------------------------------
    # Storyboard fields

    # -------------------------------------------------------------------------

    async def replace_project_scenes(
        self, project_id: UUID, rows: Sequence[dict[str, Any]]
    ) -> list[Scene]:
        """Replace a project's storyboard; new scenes start with pending statuses."""
        existing = await self.list_for_project(project_id)
        await self.db.execute(delete(Scene).where(Scene.project_id == project_id))

        scenes = [
            Scene(
                project_id=project_id,
                image_status=PENDING,
                video_status=PENDING,
                video_status_updated_at=self.clock(),
                **row,
            )
            for row in rows
        ]
        self.db.add_all(scenes)
        await self.db.commit()
        for scene in scenes:
            await self.db.refresh(scene)

        for old in existing:
            await self.feed.publish(project_id, SCENE_DELETED, old.id)
        for scene in scenes:
            await self._publish(SCENE_INSERTED, scene)
        return scenes

    async def update_fields(self, scene: Scene, changes: dict[str, Any]) -> Scene:
        """Apply a patch of non-job columns."""
        forbidden = JOB_FIELDS.intersection(changes)
        if forbidden:
            raise ValueError(f"job columns cannot be patched directly: {sorted(forbidden)}")

        for key, value in changes.items():
            setattr(scene, key, value)
        await self.db.commit()
        await self.db.refresh(scene)
        await self._publish(SCENE_UPDATED, scene)
        return scene

    async def delete(self, scene: Scene) -> None:
        project_id, scene_id = scene.project_id, scene.id
        await self.db.delete(scene)
        await self.db.commit()
        await self.feed.publish(project_id, SCENE_DELETED, scene_id)

    async def _publish(self, event_type: str, scene: Scene) -> None:
        record = SceneResponse.model_validate(scene).model_dump(mode="json")
        await self.feed.publish(scene.project_id, event_type, scene.id, record)
