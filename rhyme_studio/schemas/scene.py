from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

GenerationStatus = Literal["pending", "generating", "done", "failed"]


class SceneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    scene_number: int
    start_time: float
    end_time: float
    lyric_snippet: str
    scene_description: str
    characters_in_scene: list[str] = Field(default_factory=list)
    shot_type: str
    image_prompt: str
    animation_prompt: str
    image_url: str | None
    image_status: GenerationStatus
    video_url: str | None
    video_status: GenerationStatus
    video_request_id: str | None
    video_error: str | None
    video_status_updated_at: datetime | None
    created_at: datetime
    updated_at: datetime


class SceneUpdate(BaseModel):
    """Editable storyboard fields.

    Image and video job status is owned by the generation endpoints and
    cannot be patched.
    """

    scene_number: int | None = None
    start_time: float | None = None
    end_time: float | None = None
    lyric_snippet: str | None = None
    scene_description: str | None = None
    characters_in_scene: list[str] | None = None
    shot_type: str | None = None
    image_prompt: str | None = None
    animation_prompt: str | None = None
    image_url: str | None = None
