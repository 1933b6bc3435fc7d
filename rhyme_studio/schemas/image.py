"""Request/response schemas for still image generation."""

from uuid import UUID

from pydantic import BaseModel, Field


class SceneImageResponse(BaseModel):
    success: bool = True
    scene_id: UUID
    image_url: str
    model: str
    reference_images_count: int = 0
    included_characters: list[str] = Field(default_factory=list)
    skipped_characters: list[str] = Field(default_factory=list)
    included_as_environment: list[str] = Field(default_factory=list)
    included_as_character_match: list[str] = Field(default_factory=list)


class CharacterImagesResponse(BaseModel):
    """Candidate images; the caller picks one as the character's primary image."""

    success: bool = True
    character_id: UUID
    images: list[str]
