"""Still image generation for scenes and characters.

A scene image moves pending/done/failed -> generating -> done | failed
through conditional writes on ``image_status``. Characters and environments
named in the scene (environments always) are passed as reference images
when they have a primary image.

Character images are candidates only: nothing is stored until the caller
picks one as the character's primary image.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rhyme_studio.config import Settings, get_settings
from rhyme_studio.exceptions import (
    ImageAlreadyGeneratingError,
    MissingRequiredFieldError,
)
from rhyme_studio.models.character import Character
from rhyme_studio.schemas.image import SceneImageResponse
from rhyme_studio.services.change_feed import SceneChangeFeed
from rhyme_studio.services.cost_ledger import CHARACTER_IMAGE_SERVICE, SCENE_IMAGE_SERVICE, CostLedger
from rhyme_studio.services.image_provider import FalImageClient
from rhyme_studio.services.scene_store import SceneStore

logger = logging.getLogger(__name__)

ENVIRONMENT = "environment"

REFERENCE_PREAMBLE = (
    "Use the provided reference images as character and environment design guides. "
    "Match their exact appearance, proportions, colors, and style. "
    "The environment/setting reference shows the world these characters live in - "
    "use it as the backdrop."
)

CHARACTER_STYLE_PREFIX = (
    "Handcrafted felted wool animation style. Soft, fuzzy textures like needle-felted wool toys. "
    "Warm, cozy lighting with gentle shadows. Colors are muted but warm: soft oranges, deep teals, "
    "cream whites, forest greens. Characters have simple, sweet faces with small dot eyes and "
    "subtle smiles. Backgrounds look like layered felt with visible soft texture. The overall "
    "aesthetic is a cozy children's storybook brought to life through stop-motion felt animation."
)

POSE_SUFFIXES = (
    "Full body view, facing camera, standing in neutral pose.",
    "Upper body portrait, slight smile, looking warmly at viewer.",
    "Full body, gentle walking pose, three-quarter view.",
    "Close-up face portrait, gentle expression, soft focus background.",
)

ANGLE_SUFFIXES = (
    "Side profile view, looking to the left, same character design and colors.",
    "Three-quarter back view, looking over shoulder, same character design and colors.",
    "Back view, same character design and colors, showing from behind.",
)

CONSISTENCY_NOTE = (
    "IMPORTANT: Generate the EXACT same character with identical colors, proportions, "
    "and design details. Maintain perfect consistency."
)


@dataclass
class ReferenceSelection:
    image_urls: list[str] = field(default_factory=list)
    included: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    as_environment: list[str] = field(default_factory=list)
    as_character_match: list[str] = field(default_factory=list)


def select_references(characters: list[Character], names_in_scene: list[str]) -> ReferenceSelection:
    """Pick the reference images for a scene.

    Environments are always included; characters only when the scene names
    them (case-insensitive). Anything without a primary image is skipped, as
    is a scene name with no matching character.
    """
    wanted = {name.lower() for name in names_in_scene}
    selection = ReferenceSelection()

    for character in characters:
        is_environment = character.character_type == ENVIRONMENT
        if not is_environment and character.name.lower() not in wanted:
            continue
        if not character.primary_image_url:
            selection.skipped.append(character.name)
            continue
        selection.image_urls.append(character.primary_image_url)
        selection.included.append(character.name)
        if is_environment:
            selection.as_environment.append(character.name)
        else:
            selection.as_character_match.append(character.name)

    known = {c.name.lower() for c in characters}
    for name in names_in_scene:
        if name.lower() not in known and name not in selection.skipped:
            selection.skipped.append(name)
    return selection


def build_scene_image_prompt(image_prompt: str, with_references: bool) -> str:
    if with_references:
        return f"{REFERENCE_PREAMBLE} {image_prompt}"
    return image_prompt


def character_base_prompt(name: str, description: str) -> str:
    return f"{CHARACTER_STYLE_PREFIX}\n\nCharacter: {name} - {description}"


class ImageService:
    def __init__(
        self,
        db: AsyncSession,
        provider: FalImageClient,
        settings: Settings | None = None,
        feed: SceneChangeFeed | None = None,
    ) -> None:
        self.db = db
        self.provider = provider
        self.settings = settings or get_settings()
        self.store = SceneStore(db, feed=feed)
        self.ledger = CostLedger(db)

    # =========================================================================
    # Scene images
    # =========================================================================

    async def generate_scene_image(self, scene_id: UUID) -> SceneImageResponse:
        """Generate and store the still image for one scene.

        Raises:
            MissingRequiredFieldError: The scene has no image prompt
            ImageAlreadyGeneratingError: Another generation holds the scene
            UpstreamError: The image API failed; the scene is left failed
        """
        scene = await self.store.get(scene_id)
        if not scene.image_prompt:
            raise MissingRequiredFieldError("image_prompt")
        if not await self.store.mark_image_generating(scene_id):
            raise ImageAlreadyGeneratingError(scene_id)

        try:
            result = await self.db.execute(
                select(Character)
                .where(Character.project_id == scene.project_id)
                .order_by(Character.created_at)
            )
            references = select_references(list(result.scalars().all()), scene.characters_in_scene or [])
            logger.info(
                f"Scene {scene.scene_number} image: {len(references.image_urls)} reference(s), "
                f"included={references.included or 'none'}, skipped={references.skipped or 'none'}"
            )

            prompt = build_scene_image_prompt(scene.image_prompt, bool(references.image_urls))
            if references.image_urls:
                model = self.settings.scene_image_reference_model
                payload = {
                    "prompt": prompt,
                    "image_urls": references.image_urls,
                    "aspect_ratio": "16:9",
                    "num_images": 1,
                }
            else:
                model = self.settings.scene_image_model
                payload = {"prompt": prompt, "image_size": "landscape_16_9", "num_images": 1}

            image_url = await self.provider.generate(model, payload)
        except Exception as e:
            logger.error(f"Image generation failed for scene {scene_id}: {e}")
            await self.store.mark_image_failed(scene_id)
            raise

        if not await self.store.mark_image_done(scene_id, image_url):
            logger.warning(f"Scene {scene_id} image finished but the row is no longer generating")
        await self.ledger.log(
            scene.project_id,
            SCENE_IMAGE_SERVICE,
            f"Scene image scene {scene.scene_number}",
            self.settings.scene_image_cost,
        )

        return SceneImageResponse(
            scene_id=scene_id,
            image_url=image_url,
            model=model,
            reference_images_count=len(references.image_urls),
            included_characters=references.included,
            skipped_characters=references.skipped,
            included_as_environment=references.as_environment,
            included_as_character_match=references.as_character_match,
        )

    # =========================================================================
    # Character images
    # =========================================================================

    async def generate_character_images(self, character: Character) -> list[str]:
        """Four pose candidates for a character, generated in parallel."""
        base = character_base_prompt(character.name, character.description)
        payloads = [
            {
                "prompt": f"{base}\n\n{suffix}",
                "image_size": "square",
                "num_images": 1,
                "enable_safety_checker": True,
            }
            for suffix in POSE_SUFFIXES
        ]
        return await self._generate_for_character(character, self.settings.character_image_model, payloads)

    async def generate_consistent_angles(self, character: Character) -> list[str]:
        """More views of a character, anchored on its primary image."""
        if not character.primary_image_url:
            raise MissingRequiredFieldError("primary_image_url")

        base = f"{character_base_prompt(character.name, character.description)}\n\n{CONSISTENCY_NOTE}"
        payloads = [
            {
                "prompt": f"{base}\n\n{suffix}",
                "image_url": character.primary_image_url,
                "image_size": "square",
                "num_images": 1,
                "guidance_scale": 3.5,
                "num_inference_steps": 28,
                "enable_safety_checker": True,
            }
            for suffix in ANGLE_SUFFIXES
        ]
        return await self._generate_for_character(character, self.settings.character_angle_model, payloads)

    async def _generate_for_character(
        self, character: Character, model: str, payloads: list[dict]
    ) -> list[str]:
        if not character.description:
            raise MissingRequiredFieldError("description")

        logger.info(f"Generating {len(payloads)} images for character {character.name}")
        images = await asyncio.gather(*(self.provider.generate(model, p) for p in payloads))
        await self.ledger.log(
            character.project_id,
            CHARACTER_IMAGE_SERVICE,
            f"Character images {character.name}",
            self.settings.character_image_cost * len(images),
        )
        return list(images)
