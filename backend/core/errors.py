"""
Error Taxonomy
Domain exceptions raised by engines and mapped to HTTP responses in main.py.
"""
from typing import Any, Dict, Optional


class IncidentDeskError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    error_name: str = "InternalError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error_name, "detail": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(IncidentDeskError):
    status_code = 404
    error_name = "NotFound"

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} not found", {"resource": resource, "id": resource_id})
        self.resource = resource
        self.resource_id = resource_id


class ValidationError(IncidentDeskError):
    """Missing or malformed input. Not to be confused with pydantic's ValidationError."""

    status_code = 400
    error_name = "ValidationError"


class UnauthorizedError(IncidentDeskError):
    status_code = 401
    error_name = "Unauthorized"


class InvalidReferenceError(IncidentDeskError):
    """A request pointed at a sub-resource (e.g. a suggested action) that does not exist."""

    status_code = 422
    error_name = "InvalidReference"


class InvalidTransitionError(IncidentDeskError):
    status_code = 409
    error_name = "InvalidTransition"

    def __init__(self, from_status: str, to_status: str, reason: str = ""):
        message = f"Cannot change status from '{from_status}' to '{to_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {"from": from_status, "to": to_status})


class ConflictError(IncidentDeskError):
    status_code = 409
    error_name = "Conflict"


class UpstreamUnavailableError(IncidentDeskError):
    """An outbound dependency (health endpoint, inference API) failed or timed out."""

    status_code = 502
    error_name = "UpstreamUnavailable"
