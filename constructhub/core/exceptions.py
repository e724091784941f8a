"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register one handler against the
base class and map ``status_code`` onto the error envelope verbatim.

Usage:
    from constructhub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=42)
    raise ValidationError("End date must be after start date", details={"end_date": "..."})
"""


class ConstructHubError(Exception):
    """Base class for every business error raised by the service layer.

    Args:
        message: Human-readable explanation, returned to the client.
        details: Optional structured payload (field errors, blocking ids).
    """

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(ConstructHubError):
    """Input was well-formed but violated a business rule.

    Invalid status transitions, cyclic dependencies, negative amounts and
    date-range violations all land here.
    """

    status_code = 400
    error = "Validation Error"


class AuthenticationError(ConstructHubError):
    """Missing or invalid credentials. Raised by the identity layer only."""

    status_code = 401
    error = "Authentication Error"

    def __init__(self, message: str = "Authentication required", details: dict | None = None) -> None:
        super().__init__(message, details)


class AuthorizationError(ConstructHubError):
    """Actor lacks the role or ownership required for the operation."""

    status_code = 403
    error = "Authorization Error"

    def __init__(self, message: str = "Insufficient permissions", details: dict | None = None) -> None:
        super().__init__(message, details)


class NotFoundError(ConstructHubError):
    """Raised when a referenced record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Task").
        resource_id: The PK that was looked up.
    """

    status_code = 404
    error = "Not Found"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found", {"id": resource_id} if resource_id is not None else None)


class ConflictError(ConstructHubError):
    """Operation clashes with current state.

    Duplicate active approvals or time logs, deleting records that others
    still depend on, and responding to already-resolved approvals.
    """

    status_code = 409
    error = "Conflict"
