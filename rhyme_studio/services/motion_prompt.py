"""Motion prompt composition for image-to-video generation."""

# Applied to every video generation
MOTION_STYLE_SUFFIX = (
    "Very slow, dreamlike camera movement. Extremely gentle and peaceful animation. "
    "Soft, calm motion. No sudden movements. Lullaby-like atmosphere. "
    "Think Studio Ghibli quiet moments."
)

DEFAULT_SHOT_TYPE = "medium"

CAMERA_MOVEMENTS: dict[str, str] = {
    "wide": "Slow establishing pan across the scene.",
    "medium": "Gentle subtle camera movement maintaining framing.",
    "close-up": "Very slow push-in or subtle drift on the subject's face.",
    "extreme-close-up": "Nearly static with the tiniest drift on the detail.",
    "two-shot": "Slow lateral movement keeping both characters in frame.",
    "over-shoulder": "Gentle drift from behind the shoulder toward the subject.",
}


def camera_movement_for(shot_type: str | None) -> str:
    """Camera clause for a shot type; unknown or empty shot types read as medium."""
    return CAMERA_MOVEMENTS.get(shot_type or DEFAULT_SHOT_TYPE, CAMERA_MOVEMENTS[DEFAULT_SHOT_TYPE])


def compose_motion_prompt(
    motion: str | None,
    *,
    shot_type: str | None = None,
    animation_direction: str | None = None,
) -> str:
    """Build the instruction text sent to the video model.

    Layout: ``"<direction>. <camera clause> <motion>. <style suffix>"``; the
    direction prefix is omitted when no animation direction is set.
    """
    prefix = f"{animation_direction}. " if animation_direction else ""
    camera = camera_movement_for(shot_type)
    return f"{prefix}{camera} {motion or ''}. {MOTION_STYLE_SUFFIX}"
