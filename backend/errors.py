"""
Error taxonomy for the task tracker.

All domain failures derive from TaskTrackerError. The HTTP layer maps the
closed set of subclasses to status codes through ERROR_STATUS_CODES, so a new
kind of failure must be added there as well.
"""

from typing import Any, Dict, Optional


class TaskTrackerError(Exception):
    """
    Base class for task tracker failures.

    Attributes:
        message: Human-readable description, safe to return to callers
        error_code: Machine-readable code
        details: Extra context (field name, resource id)
    """

    error_code = "TASK_TRACKER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(TaskTrackerError):
    """Malformed input or an illegal transition attempt."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)


class NotFoundError(TaskTrackerError):
    """Referenced task, team or user does not exist."""

    error_code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found", {"resource": resource})


class AuthorizationError(TaskTrackerError):
    """Role or ownership mismatch."""

    error_code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class StorageError(TaskTrackerError):
    """Underlying persistence failure. The message never carries driver detail."""

    error_code = "STORAGE_ERROR"


ERROR_STATUS_CODES = {
    ValidationError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    StorageError: 500,
}


def status_code_for(error: TaskTrackerError) -> int:
    """Return the HTTP status for a task tracker error."""
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 500
