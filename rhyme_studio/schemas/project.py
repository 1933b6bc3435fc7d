from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ProjectStatus = Literal["setup", "characters", "storyboard", "images", "videos", "export"]


class TimestampEntry(BaseModel):
    """One timed lyric line."""

    start: float
    end: float
    text: str


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    audio_url: str | None = None
    lyrics: str | None = None
    style_direction: str | None = None
    creative_brief: str | None = None
    animation_direction: str | None = None


class ProjectUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    audio_url: str | None = None
    lyrics: str | None = None
    timestamps: list[TimestampEntry] | None = None
    status: ProjectStatus | None = None
    style_direction: str | None = None
    creative_brief: str | None = None
    animation_direction: str | None = None


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    audio_url: str | None
    lyrics: str | None
    timestamps: list[TimestampEntry] | None
    status: str
    style_direction: str | None
    creative_brief: str | None
    animation_direction: str | None
    total_ai_cost: float
    created_at: datetime
    updated_at: datetime


class CharacterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    primary_image_url: str | None = None
    character_type: Literal["character", "environment"] = "character"


class CharacterUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    primary_image_url: str | None = None
    character_type: Literal["character", "environment"] | None = None


class CharacterResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    name: str
    description: str
    primary_image_url: str | None
    character_type: str
    created_at: datetime


class CostLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    service: str
    operation: str
    cost: float
    tokens_input: int | None
    tokens_output: int | None
    created_at: datetime
