"""
Error taxonomy shared by services and the HTTP layer.

Services raise these; ``examhub.main`` turns them into the structured
``{"error": {...}}`` body so no exception ever leaves an endpoint unformatted.
"""
from typing import Optional


class ExamHubError(Exception):
    """Base class for all expected failures."""

    kind: str = "internal_error"
    status_code: int = 500
    default_message: str = "An internal error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "type": self.kind,
            "status_code": self.status_code,
        }


class Unauthorized(ExamHubError):
    kind = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ExamHubError):
    kind = "forbidden"
    status_code = 403
    default_message = "Forbidden"


class NotFound(ExamHubError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class ValidationError(ExamHubError):
    kind = "validation_error"
    status_code = 400
    default_message = "Invalid request"


class Internal(ExamHubError):
    kind = "internal_error"
    status_code = 500
