"""
Domain errors raised by the service layer.

Each error carries the HTTP status it maps to; the handlers registered in
``blog.main`` render every one of them as ``{"error": message}``.
"""
from fastapi import status


class BlogError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(BlogError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class Forbidden(BlogError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFound(BlogError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ValidationError(BlogError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class Conflict(BlogError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class StoreError(BlogError):
    """Unexpected store failure.  The message never reaches the client."""
