"""
Cache Module

Fail-open Redis connection, domain cache service and cache warmer.
"""

from .cache_service import CacheKeyBuilder, CacheObserver, CacheService
from .cache_warmer import CacheWarmer
from .redis_client import ConnectionManager

__all__ = [
    "CacheKeyBuilder",
    "CacheObserver",
    "CacheService",
    "CacheWarmer",
    "ConnectionManager",
]
