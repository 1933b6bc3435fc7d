import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rhyme_studio.models.base import Base, JSONType, TimestampMixin, UUIDMixin

# Generation status shared by image_status and video_status
PENDING = "pending"
GENERATING = "generating"
DONE = "done"
FAILED = "failed"


class Scene(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "scenes"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Storyboard
    scene_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[float] = mapped_column(Float, default=0.0)
    end_time: Mapped[float] = mapped_column(Float, default=0.0)
    lyric_snippet: Mapped[str] = mapped_column(Text, default="")
    scene_description: Mapped[str] = mapped_column(Text, default="")
    characters_in_scene: Mapped[list[str]] = mapped_column(JSONType, default=list)
    shot_type: Mapped[str] = mapped_column(String(50), default="medium")
    image_prompt: Mapped[str] = mapped_column(Text, default="")
    animation_prompt: Mapped[str] = mapped_column(Text, default="")

    # Still image
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_status: Mapped[str] = mapped_column(String(20), default=PENDING)

    # Video job: pending, generating, done, failed
    video_status: Mapped[str] = mapped_column(String(20), default=PENDING, index=True)
    video_request_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    video_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    video_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    video_status_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    project: Mapped["Project"] = relationship("Project", back_populates="scenes")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Scene {self.scene_number} ({self.video_status})>"
