from typing import Any

from sqlalchemy import Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rhyme_studio.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class Project(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Song inputs
    audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    lyrics: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Timed lyric lines: [{"start": float, "end": float, "text": str}, ...]
    timestamps: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)

    # Status: setup, characters, storyboard, images, videos, export
    status: Mapped[str] = mapped_column(String(50), default="setup")

    # Creative direction
    style_direction: Mapped[str | None] = mapped_column(Text, nullable=True)
    creative_brief: Mapped[str | None] = mapped_column(Text, nullable=True)
    animation_direction: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Running total maintained by the cost ledger
    total_ai_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Relationships
    characters: Mapped[list["Character"]] = relationship(  # noqa: F821
        "Character", back_populates="project", cascade="all, delete-orphan"
    )
    scenes: Mapped[list["Scene"]] = relationship(  # noqa: F821
        "Scene", back_populates="project", cascade="all, delete-orphan"
    )
    cost_logs: Mapped[list["CostLog"]] = relationship(  # noqa: F821
        "CostLog", back_populates="project", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Project {self.name}>"
