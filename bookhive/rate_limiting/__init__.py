"""
Rate Limiting Module

Fixed-window rate limiting with Redis counters and fail-open behaviour.
"""

from .rate_limiter import (
    RateLimiter,
    RateLimitResult,
    auth_limiter,
    client_ip,
    general_limiter,
    get_user_identifier,
    message_limiter,
    rate_limit,
    search_limiter,
    upload_limiter,
)

__all__ = [
    "RateLimitResult",
    "RateLimiter",
    "auth_limiter",
    "client_ip",
    "general_limiter",
    "get_user_identifier",
    "message_limiter",
    "rate_limit",
    "search_limiter",
    "upload_limiter",
]
