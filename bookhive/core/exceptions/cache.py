"""
Cache-Related Exceptions

Exceptions for the Redis connection and the cache service. Most of these
never reach callers: the connection manager fails open and logs them.
"""

from bookhive.core.exceptions.base import BookHiveError


class CacheError(BookHiveError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when unable to connect to Redis.

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Wrong REDIS_URL or credentials
    - Startup self-test returned an unexpected value
    """
    pass


class CacheSerializationError(CacheError):
    """
    Raised when a cached payload cannot be encoded or decoded.

    Treated as a cache miss by the connection manager.
    """
    pass
