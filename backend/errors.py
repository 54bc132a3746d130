"""
Error taxonomy shared by the store, the Spotify client and the API layer.
"""
from typing import Optional


class NotAuthenticated(Exception):
    """No session cookie, or no stored session for it."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)
        self.message = message


class AuthError(Exception):
    """Spotify rejected a code exchange or a refresh token."""


class UpstreamError(Exception):
    """Spotify Web API answered with a non-2xx status."""

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        self.message = message or f"Spotify API error: {status_code}"
        super().__init__(self.message)


class TokenExpired(UpstreamError):
    """401 from the Web API: the access token needs a refresh."""

    def __init__(self, message: str = "Token expired"):
        super().__init__(401, message)


class ValidationError(Exception):
    """Malformed history import payload."""
