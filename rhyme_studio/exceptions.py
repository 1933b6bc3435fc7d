"""Custom exceptions for the studio backend.

Every exception carries a machine-readable error code so handlers can
return structured error payloads and callers can decide whether to retry,
toast, or leave state untouched.
"""

from rhyme_studio.constants.error_codes import get_error_spec
from rhyme_studio.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class StudioError(Exception):
    """Base exception for all studio application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        retryable = spec.get("retryable", False)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            suggested_actions.append(
                SuggestedAction(
                    action=spec["suggested_action"],
                    endpoint=spec.get("suggested_endpoint"),
                    parameters=spec.get("parameters", {}),
                )
            )

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=retryable,
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class ResourceNotFoundError(StudioError):
    """Base class for resource not found errors."""

    status_code = 404


class ProjectNotFoundError(ResourceNotFoundError):
    """Project not found."""

    code = "PROJECT_NOT_FOUND"
    message = "Project not found"

    def __init__(self, project_id: object | None = None):
        message = f"Project not found: {project_id}" if project_id else self.message
        location = ErrorLocation(project_id=str(project_id)) if project_id else None
        super().__init__(message, location=location)


class SceneNotFoundError(ResourceNotFoundError):
    """Scene not found."""

    code = "SCENE_NOT_FOUND"
    message = "Scene not found"

    def __init__(self, scene_id: object | None = None):
        message = f"Scene not found: {scene_id}" if scene_id else self.message
        location = ErrorLocation(scene_id=str(scene_id)) if scene_id else None
        super().__init__(message, location=location)


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(StudioError):
    """Base class for validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400


class MissingRequiredFieldError(ValidationError):
    """Required field is missing."""

    code = "MISSING_REQUIRED_FIELD"
    message = "Required field is missing"

    def __init__(self, field: str | None = None):
        message = f"Missing required field: {field}" if field else self.message
        location = ErrorLocation(field=field) if field else None
        super().__init__(message, location=location)


class MissingTimestampsError(ValidationError):
    """Project has no timed lyric lines yet."""

    code = "MISSING_TIMESTAMPS"
    message = "Project has no timestamps. Please complete project setup first."


# =============================================================================
# Conflict Errors (409)
# =============================================================================


class JobAlreadyRunningError(StudioError):
    """A video job is already outstanding for the scene."""

    code = "JOB_ALREADY_RUNNING"
    status_code = 409
    message = "Video generation is already in progress for this scene"

    def __init__(self, scene_id: object | None = None):
        message = (
            f"Video generation is already in progress for scene {scene_id}"
            if scene_id
            else self.message
        )
        location = ErrorLocation(scene_id=str(scene_id)) if scene_id else None
        super().__init__(message, location=location)



class ImageAlreadyGeneratingError(StudioError):
    """A still image is already being generated for the scene."""

    code = "IMAGE_ALREADY_GENERATING"
    status_code = 409
    message = "Image generation is already in progress for this scene"

    def __init__(self, scene_id: object | None = None):
        message = (
            f"Image generation is already in progress for scene {scene_id}"
            if scene_id
            else self.message
        )
        location = ErrorLocation(scene_id=str(scene_id)) if scene_id else None
        super().__init__(message, location=location)

# =============================================================================
# Upstream Service Errors (502/504)
# =============================================================================


class UpstreamError(StudioError):
    """An external AI service rejected the request or could not be reached."""

    code = "UPSTREAM_ERROR"
    status_code = 502
    message = "Upstream service error"

    def __init__(
        self,
        message: str | None = None,
        *,
        service: str | None = None,
        upstream_status: int | None = None,
    ):
        self.service = service
        self.upstream_status = upstream_status
        super().__init__(message)


class UpstreamTimeoutError(UpstreamError):
    """An external AI service did not answer within the request timeout."""

    code = "UPSTREAM_TIMEOUT"
    status_code = 504
    message = "Upstream service timed out"


class UpstreamInvalidResponseError(UpstreamError):
    """An external AI service answered with a payload we cannot use."""

    code = "UPSTREAM_INVALID_RESPONSE"
    message = "Upstream service returned an invalid response"


# =============================================================================
# System Errors (500)
# =============================================================================


class ConfigurationError(StudioError):
    """A required setting (usually an API key) is missing."""

    code = "CONFIGURATION_ERROR"
    status_code = 500
    message = "Service is not configured"
