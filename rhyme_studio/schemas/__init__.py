from rhyme_studio.schemas.project import (
    CharacterCreate,
    CharacterResponse,
    CostLogResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    TimestampEntry,
)
from rhyme_studio.schemas.scene import SceneResponse, SceneUpdate
from rhyme_studio.schemas.video import (
    CancelVideoRequest,
    CancelVideoResponse,
    GenerateVideoRequest,
    GenerateVideoResponse,
    PollVideoStatusResponse,
    SceneJobUpdate,
)

__all__ = [
    "ProjectCreate",
    "ProjectUpdate",
    "ProjectResponse",
    "TimestampEntry",
    "CharacterCreate",
    "CharacterResponse",
    "CostLogResponse",
    "SceneResponse",
    "SceneUpdate",
    "GenerateVideoRequest",
    "GenerateVideoResponse",
    "PollVideoStatusResponse",
    "SceneJobUpdate",
    "CancelVideoRequest",
    "CancelVideoResponse",
]
