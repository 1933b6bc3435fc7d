"""Request/response schemas for the video job lifecycle endpoints."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel


class GenerateVideoRequest(BaseModel):
    """Start one video job for a scene.

    Fields left empty fall back to the stored scene / project values.
    """

    project_id: UUID | None = None
    image_url: str | None = None
    animation_prompt: str | None = None
    scene_description: str | None = None
    shot_type: str | None = None
    animation_direction: str | None = None


class GenerateVideoResponse(BaseModel):
    success: bool = True
    scene_id: UUID
    request_id: str
    model: str
    message: str = "Video generation queued successfully"


class SceneJobUpdate(BaseModel):
    """One state change observed during a poll cycle."""

    scene_id: UUID
    scene_number: int
    status: Literal["done", "failed"]
    video_url: str | None = None
    error: str | None = None


class PollVideoStatusResponse(BaseModel):
    success: bool = True
    updates: list[SceneJobUpdate]
    model: str
    still_generating: int
    message: str | None = None


class CancelVideoRequest(BaseModel):
    request_id: str | None = None


class CancelVideoResponse(BaseModel):
    success: bool = True
    scene_id: UUID
    upstream_cancelled: bool
    message: str = "Video generation cancelled successfully"
