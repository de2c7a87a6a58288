"""Domain error taxonomy.

Each error carries the HTTP status and the machine-readable code that the API
layer renders into the response envelope.
"""
from typing import Any, Optional


class TrackerError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(TrackerError):
    """Missing or malformed input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(TrackerError):
    """No valid credentials were supplied."""

    status_code = 401
    code = "UNAUTHORIZED"


class AuthorizationError(TrackerError):
    """Role or membership check failed."""

    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(TrackerError):
    """Referenced entity does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} not found: {entity_id}"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class ProjectNotFoundError(NotFoundError):
    """Raised by code generation when the project does not resolve."""

    def __init__(self, project_id: Any = None):
        super().__init__("Project", project_id)


class ConflictError(TrackerError):
    """Uniqueness violation, e.g. a duplicate email."""

    status_code = 409
    code = "CONFLICT"


class WorkloadExceededError(TrackerError):
    """Raised when an assignment would push a developer over the sprint caps."""

    status_code = 400
    code = "WORKLOAD_EXCEEDED"

    def __init__(
        self,
        message: str,
        current_points: int,
        current_hours: float,
        resulting_points: int,
        resulting_hours: float,
    ):
        super().__init__(
            message,
            details={
                "current_points": current_points,
                "current_hours": current_hours,
                "resulting_points": resulting_points,
                "resulting_hours": resulting_hours,
            },
        )
        self.current_points = current_points
        self.current_hours = current_hours
        self.resulting_points = resulting_points
        self.resulting_hours = resulting_hours


class OracleError(TrackerError):
    """The Q&A assistant backend failed or answered with garbage."""

    status_code = 502
    code = "ASSISTANT_UNAVAILABLE"
