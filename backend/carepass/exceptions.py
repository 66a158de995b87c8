"""
Domain errors raised by the service layer.

Each error carries the HTTP status it maps to; the handlers registered in
``carepass.main`` render them as ``{"success": false, "error": message}``.
"""

from fastapi import status


class CarePassError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequest(CarePassError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(CarePassError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(CarePassError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(CarePassError):
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(CarePassError):
    """The external generative-language API failed or returned no content."""


class UpstreamAuthError(UpstreamError):
    """Upstream answered 403: bad key or exhausted quota. Never retried."""
