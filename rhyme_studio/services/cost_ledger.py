"""Append-only ledger of billable AI operations.

Each entry adds a CostLog row and bumps the owning project's running total
in the same transaction. Cost tracking never blocks the operation it
describes: failures are logged and swallowed.
"""

import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rhyme_studio.models.cost_log import CostLog
from rhyme_studio.models.project import Project

logger = logging.getLogger(__name__)

# Service labels as they appear in the ledger
VIDEO_SERVICE = "fal-ltx-video-fast"
STORYBOARD_SERVICE = "openai-gpt4o"
SCENE_IMAGE_SERVICE = "fal-flux-scene-image"
CHARACTER_IMAGE_SERVICE = "fal-flux-character"

# GPT-4o pricing per 1K tokens
GPT4O_INPUT_COST_PER_1K = 0.0025
GPT4O_OUTPUT_COST_PER_1K = 0.01


def gpt4o_cost(tokens_input: int, tokens_output: int) -> float:
    return (tokens_input / 1000) * GPT4O_INPUT_COST_PER_1K + (
        tokens_output / 1000
    ) * GPT4O_OUTPUT_COST_PER_1K


class CostLedger:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def log(
        self,
        project_id: UUID,
        service: str,
        operation: str,
        cost: float,
        tokens_input: int | None = None,
        tokens_output: int | None = None,
    ) -> CostLog | None:
        """Record one billable operation.

        Returns:
            The stored entry, or None if it could not be written
        """
        entry = CostLog(
            project_id=project_id,
            service=service,
            operation=operation,
            cost=cost,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
        )
        try:
            self.db.add(entry)
            # Increment in SQL so concurrent writers do not lose updates
            await self.db.execute(
                update(Project)
                .where(Project.id == project_id)
                .values(total_ai_cost=Project.total_ai_cost + cost)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            await self.db.refresh(entry)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to log cost for project {project_id} ({service}): {e}")
            return None

        logger.info(f"Cost logged for project {project_id}: {service} {operation} ${cost:.4f}")
        return entry

    async def list_for_project(self, project_id: UUID) -> list[CostLog]:
        result = await self.db.execute(
            select(CostLog)
            .where(CostLog.project_id == project_id)
            .order_by(CostLog.created_at.desc())
        )
        return list(result.scalars().all())
