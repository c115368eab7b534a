"""
Standardized API Response Module

Provides consistent response formatting across all API endpoints.

RESPONSE FORMAT:
    Success:
        {
            "data": <response data>,
            "status": "success"
        }

    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable reason",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }

ERROR CODES:
    - VALIDATION_ERROR: Malformed date/time/name from the actor (re-prompt)
    - STATE_MISMATCH: Action does not match the conversation step
    - SESSION_EXPIRED: Confirmation referenced a conversation that no longer exists
    - SLOT_CONFLICT: The chosen instant was taken by another request
    - NOT_FOUND: Lesson missing or actor lacks the operator role
    - PERSISTENCE_FAILURE: Storage unavailable
"""

from typing import Any, Optional


class ErrorCodes:
    """Standard error codes for API responses."""

    # Validation errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Conflict errors (409)
    STATE_MISMATCH = "STATE_MISMATCH"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SLOT_CONFLICT = "SLOT_CONFLICT"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"

    # Server errors (503)
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def success_response(data: Any) -> dict:
    """Create a standardized success response dict."""
    return {"data": data, "status": "success"}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """
    Create a standardized error response dict.

    The message is shown to the actor, so it must say why the action failed.
    """
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response
