"""Error codes dictionary for the studio API.

Single source of truth for error codes, their retryability and suggested
recovery actions. Used by exception handlers to build machine-readable
error payloads.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str
    parameters: dict[str, Any]


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Resource errors
    # ==========================================================================
    "PROJECT_NOT_FOUND": {
        "retryable": False,
    },
    "SCENE_NOT_FOUND": {
        "retryable": True,
        "suggested_action": "refresh_scenes",
        "suggested_endpoint": "GET /api/projects/{project_id}/scenes",
    },
    # ==========================================================================
    # Validation errors (not retryable, fix input)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "MISSING_REQUIRED_FIELD": {
        "retryable": False,
    },
    "MISSING_TIMESTAMPS": {
        "retryable": False,
        "suggested_fix": "Transcribe the project audio before generating a storyboard",
        "suggested_action": "transcribe",
        "suggested_endpoint": "POST /api/projects/{project_id}/transcribe",
    },
    # ==========================================================================
    # Job lifecycle conflicts
    # ==========================================================================
    "JOB_ALREADY_RUNNING": {
        "retryable": True,
        "suggested_action": "wait_and_poll",
        "suggested_endpoint": "POST /api/projects/{project_id}/video/poll",
        "parameters": {"delay_ms": 8000},
    },
    "IMAGE_ALREADY_GENERATING": {
        "retryable": True,
        "suggested_action": "refresh_scenes",
        "suggested_endpoint": "GET /api/scenes/{scene_id}",
    },
    # ==========================================================================
    # Upstream AI services
    # ==========================================================================
    "UPSTREAM_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    "UPSTREAM_TIMEOUT": {
        "retryable": True,
        "suggested_action": "check_status_then_retry",
        "suggested_endpoint": "GET /api/scenes/{scene_id}",
    },
    "UPSTREAM_INVALID_RESPONSE": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 1000, "max_retries": 1},
    },
    "CONFIGURATION_ERROR": {
        "retryable": False,
    },
    # ==========================================================================
    # System errors (retryable with backoff)
    # ==========================================================================
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    # ==========================================================================
    # Request errors
    # ==========================================================================
    "BAD_REQUEST": {
        "retryable": False,
    },
    "NOT_FOUND": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})
