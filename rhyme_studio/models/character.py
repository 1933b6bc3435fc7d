import uuid

from sqlalchemy import ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rhyme_studio.models.base import Base, TimestampMixin, UUIDMixin


class Character(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "characters"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    primary_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # character | environment
    character_type: Mapped[str] = mapped_column(String(50), default="character")

    project: Mapped["Project"] = relationship("Project", back_populates="characters")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Character {self.name}>"
