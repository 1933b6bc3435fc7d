import logging
from uuid import UUID

from fastapi import APIRouter

from rhyme_studio.api.deps import DbSession, Images, get_character_or_404
from rhyme_studio.schemas.image import CharacterImagesResponse, SceneImageResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/scenes/{scene_id}/image", response_model=SceneImageResponse)
async def generate_scene_image(scene_id: UUID, service: Images) -> SceneImageResponse:
    """Generate a scene's still image, using its characters as references."""
    return await service.generate_scene_image(scene_id)


@router.post(
    "/projects/{project_id}/characters/{character_id}/images",
    response_model=CharacterImagesResponse,
)
async def generate_character_images(
    project_id: UUID,
    character_id: UUID,
    db: DbSession,
    service: Images,
) -> CharacterImagesResponse:
    character = await get_character_or_404(project_id, character_id, db)
    images = await service.generate_character_images(character)
    return CharacterImagesResponse(character_id=character_id, images=images)


@router.post(
    "/projects/{project_id}/characters/{character_id}/images/angles",
    response_model=CharacterImagesResponse,
)
async def generate_character_angles(
    project_id: UUID,
    character_id: UUID,
    db: DbSession,
    service: Images,
) -> CharacterImagesResponse:
    """More views of a character that match its primary image."""
    character = await get_character_or_404(project_id, character_id, db)
    images = await service.generate_consistent_angles(character)
    return CharacterImagesResponse(character_id=character_id, images=images)
