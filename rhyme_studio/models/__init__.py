from rhyme_studio.models.base import Base
from rhyme_studio.models.character import Character
from rhyme_studio.models.cost_log import CostLog
from rhyme_studio.models.project import Project
from rhyme_studio.models.scene import Scene

__all__ = [
    "Base",
    "Project",
    "Character",
    "Scene",
    "CostLog",
]
