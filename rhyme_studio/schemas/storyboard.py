"""Schemas for transcription, storyboard generation and prompt rewriting."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from rhyme_studio.schemas.project import TimestampEntry
from rhyme_studio.schemas.scene import SceneResponse


# =============================================================================
# Transcription
# =============================================================================


class TranscribeRequest(BaseModel):
    """Overrides the project's stored audio URL when given."""

    audio_url: str | None = None


class TranscriptionResult(BaseModel):
    text: str
    timestamps: list[TimestampEntry]


# =============================================================================
# Storyboard
# =============================================================================


class GeneratedScene(BaseModel):
    """One scene as returned by the language model."""

    scene_number: int
    start_time: float = 0.0
    end_time: float = 0.0
    lyric_snippet: str = ""
    scene_description: str = ""
    characters_in_scene: list[str] = Field(default_factory=list)
    shot_type: str = "medium"
    image_prompt: str = ""
    animation_prompt: str = ""

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_timestamp(cls, value: object) -> float:
        """Accept 9.86 as well as "9.86s"; unparseable values become 0."""
        if isinstance(value, (int, float)):
            return float(value)
        cleaned = str(value).strip()
        if cleaned.lower().endswith("s"):
            cleaned = cleaned[:-1].strip()
        try:
            return float(cleaned)
        except ValueError:
            return 0.0

    @field_validator("shot_type", mode="before")
    @classmethod
    def default_shot_type(cls, value: object) -> str:
        return str(value) if value else "medium"


class StoryboardPrompt(BaseModel):
    system: str
    user: str


class StoryboardResponse(BaseModel):
    scenes: list[SceneResponse]
    prompt: StoryboardPrompt
    raw_response: str


# =============================================================================
# Prompt rewrite
# =============================================================================


class RewritePromptRequest(BaseModel):
    prompt_type: Literal["image", "animation"]
    current_prompt: str = Field(..., min_length=1)
    scene_description: str = ""
    feedback: str = Field(..., min_length=1)


class RewritePromptResponse(BaseModel):
    rewritten_prompt: str
