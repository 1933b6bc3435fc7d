"""Storyboard generation: one scene per timed lyric line, written by GPT-4o."""

import json
import logging
from uuid import UUID

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rhyme_studio.config import Settings, get_settings
from rhyme_studio.exceptions import (
    MissingTimestampsError,
    ProjectNotFoundError,
    UpstreamInvalidResponseError,
)
from rhyme_studio.models.character import Character
from rhyme_studio.models.project import Project
from rhyme_studio.schemas.project import TimestampEntry
from rhyme_studio.schemas.scene import SceneResponse
from rhyme_studio.schemas.storyboard import GeneratedScene, StoryboardPrompt, StoryboardResponse
from rhyme_studio.services.change_feed import SceneChangeFeed
from rhyme_studio.services.cost_ledger import STORYBOARD_SERVICE, CostLedger, gpt4o_cost
from rhyme_studio.services.openai_chat import create_chat_completion
from rhyme_studio.services.scene_store import SceneStore

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_MESSAGE = (
    "You are a storyboard director for a stop-motion animated children's show. "
    "You create vivid, detailed scene descriptions that will be used to generate "
    "images and animate them into video clips."
)

SCENE_FIELD_INSTRUCTIONS = """
Generate a storyboard with one scene per lyric line. For each scene provide:

- scene_number (integer starting at 1)
- start_time (from the timestamp)
- end_time (from the timestamp)
- lyric_snippet (the text for this timestamp)
- scene_description (2-3 sentences describing what is visually happening in this scene, what the characters are doing, the environment, camera angle, mood)
- characters_in_scene (array of character names that appear in this scene)
- shot_type (one of: "wide", "medium", "close-up", "extreme-close-up", "two-shot", "over-shoulder". Vary these throughout the storyboard to create visual interest. Use wide shots for establishing scenes and environments, close-ups for emotional moments and character focus, medium shots for dialogue and action, etc.)
- image_prompt (a complete image generation prompt that combines the project's visual style with the scene description and character descriptions. Include the shot type framing in the prompt. This should be detailed enough to generate the image standalone without any other context.)
- animation_prompt (a short description of how this scene should be animated: what moves, camera motion, character actions. Keep it to 1-2 sentences focused on the key motion.)

Return the result as a JSON object with a single key "scenes" containing an array of scene objects."""


def build_system_message(project: Project) -> str:
    message = DEFAULT_SYSTEM_MESSAGE
    if project.creative_brief:
        message += (
            f" The visual style for this project is: {project.creative_brief}. "
            "Use this to inform scene descriptions, camera angles, and visual details. "
            "Do not repeat the style description in every scene — assume it as the default."
        )
    else:
        message += f" The visual style is: {project.style_direction or 'professional animation'}."
    return message


def build_user_message(characters: list[Character], timestamps: list[TimestampEntry]) -> str:
    lines = ["Here are the characters in this video:", ""]
    if not characters:
        lines.append("(No characters defined yet)")
    for character in characters:
        line = f"- {character.name}: {character.description}"
        if character.primary_image_url:
            line += " (reference images exist)"
        lines.append(line)
    lines += ["", "Here are the lyrics with timestamps:", ""]
    for ts in timestamps:
        lines.append(f'[{ts.start:.2f}s - {ts.end:.2f}s]: "{ts.text}"')
    return "\n".join(lines) + "\n" + SCENE_FIELD_INSTRUCTIONS


def parse_scenes(content: str) -> list[GeneratedScene]:
    """Parse the model's JSON answer into scenes.

    Raises:
        UpstreamInvalidResponseError: The answer is not JSON or has no scenes array
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise UpstreamInvalidResponseError(
            f"Storyboard response is not valid JSON: {e}", service=STORYBOARD_SERVICE
        ) from e

    raw_scenes = parsed.get("scenes") if isinstance(parsed, dict) else None
    if not isinstance(raw_scenes, list):
        raise UpstreamInvalidResponseError(
            "Invalid response format: expected scenes array", service=STORYBOARD_SERVICE
        )

    try:
        return [GeneratedScene.model_validate(scene) for scene in raw_scenes]
    except PydanticValidationError as e:
        raise UpstreamInvalidResponseError(
            f"Invalid scene in storyboard response: {e}", service=STORYBOARD_SERVICE
        ) from e


class StoryboardService:
    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        feed: SceneChangeFeed | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.store = SceneStore(db, feed=feed)
        self.ledger = CostLedger(db)
        self._transport = transport

    async def generate(self, project_id: UUID) -> StoryboardResponse:
        project = await self.db.get(Project, project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)

        timestamps = [TimestampEntry.model_validate(ts) for ts in project.timestamps or []]
        if not timestamps:
            raise MissingTimestampsError()

        result = await self.db.execute(
            select(Character).where(Character.project_id == project_id).order_by(Character.created_at)
        )
        characters = list(result.scalars().all())
        logger.info(
            f"Generating storyboard for project {project_id}: "
            f"{len(timestamps)} timestamp entries, {len(characters)} characters"
        )

        prompt = StoryboardPrompt(
            system=build_system_message(project),
            user=build_user_message(characters, timestamps),
        )
        completion = await create_chat_completion(
            [
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            model=self.settings.storyboard_model,
            json_mode=True,
            settings=self.settings,
            transport=self._transport,
        )

        if completion.tokens_input is not None and completion.tokens_output is not None:
            await self.ledger.log(
                project_id,
                STORYBOARD_SERVICE,
                "Storyboard generation",
                gpt4o_cost(completion.tokens_input, completion.tokens_output),
                completion.tokens_input,
                completion.tokens_output,
            )

        generated = parse_scenes(completion.content)
        logger.info(f"Parsed {len(generated)} scenes")

        scenes = await self.store.replace_project_scenes(
            project_id, [scene.model_dump() for scene in generated]
        )

        project = await self.db.get(Project, project_id, populate_existing=True)
        project.status = "storyboard"
        await self.db.commit()

        return StoryboardResponse(
            scenes=[SceneResponse.model_validate(scene) for scene in scenes],
            prompt=prompt,
            raw_response=completion.content,
        )
