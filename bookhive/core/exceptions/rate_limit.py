"""
Rate Limiting Exceptions
"""

from typing import Any

from bookhive.core.exceptions.base import BookHiveError


class RateLimitError(BookHiveError):
    """Base exception for rate limiting errors."""
    pass


class RateLimitExceededError(RateLimitError):
    """
    Raised when a fixed window is exhausted.

    Carries the RateLimitResult so the HTTP layer can render the
    X-RateLimit-* headers and the 429 body.
    """

    def __init__(self, message: str, result: Any = None, request_id: str | None = None, details=None):
        super().__init__(message, request_id=request_id, details=details)
        self.result = result
