"""
Cache Service - Domain Caching over the Connection Manager

Architecture:
    CacheService (Public API)
        ├── CacheKeyBuilder (Key namespace scheme: search hash, geo rounding)
        ├── CacheObserver (Hit/miss accounting and stage logging)
        └── ConnectionManager (Fail-open Redis primitives)

Domain Operations:
    - Popular book lists per category
    - Search results keyed by a stable digest of query + filters
    - "Nearby books" keyed by coordinates rounded to 3 decimals
    - User sessions, community stats, online presence set
    - Geospatial indexes of book and user locations
    - Coarse invalidation of the book cache family

Lifetime Policy:
    Callers pick a CacheTTL class, never a raw number, so cache lifetime
    policy stays in one place (constants.CacheTTL).
"""

import hashlib
import inspect
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import orjson

from bookhive.core.config.constants import (
    BOOK_CACHE_PATTERNS,
    DEFAULT_NEARBY_RADIUS_KM,
    DEFAULT_POPULAR_CATEGORY,
    GEO_KEY_PRECISION,
    KEY_COMMUNITY_STATS,
    KEY_GEO_BOOKS,
    KEY_GEO_USERS,
    KEY_NEARBY_BOOKS,
    KEY_ONLINE_USERS,
    KEY_POPULAR_BOOKS,
    KEY_SEARCH_RESULTS,
    KEY_USER_SESSION,
    SEARCH_HASH_LENGTH,
    CacheTTL,
)
from bookhive.core.config.settings import Settings, get_settings
from bookhive.core.interfaces import WarmupSource
from bookhive.core.logging.logger import get_logger, log_stage
from bookhive.infrastructure.cache.redis_client import ConnectionManager

logger = get_logger(__name__)


# =============================================================================
# LAYER 1: KEY SCHEME
# =============================================================================


class CacheKeyBuilder:
    """
    Builds keys in the colon-delimited namespace.

    Search keys:
        md5 of canonical JSON {"query": normalized, "filters": filters}
        with keys sorted at every depth, truncated to 8 hex digits.
        Equivalent filter objects always produce the same key.

    Nearby keys:
        Coordinates rounded to 3 decimals (~110 m) so users standing in
        roughly the same spot share an entry.
    """

    @staticmethod
    def search(query: str, filters: dict[str, Any] | None = None) -> str:
        canonical = orjson.dumps(
            {"query": (query or "").strip().lower(), "filters": filters or {}},
            option=orjson.OPT_SORT_KEYS,
        )
        digest = hashlib.md5(canonical).hexdigest()[:SEARCH_HASH_LENGTH]
        return f"{KEY_SEARCH_RESULTS}:{digest}"

    @staticmethod
    def nearby(latitude: float, longitude: float, radius: float = DEFAULT_NEARBY_RADIUS_KM) -> str:
        # "+ 0.0" folds -0.0 into 0.0 so both sides of the meridian agree
        lat = round(latitude, GEO_KEY_PRECISION) + 0.0
        lng = round(longitude, GEO_KEY_PRECISION) + 0.0
        return f"{KEY_NEARBY_BOOKS}:{lat:.{GEO_KEY_PRECISION}f}:{lng:.{GEO_KEY_PRECISION}f}:{radius:g}"

    @staticmethod
    def popular(category: str = DEFAULT_POPULAR_CATEGORY) -> str:
        return f"{KEY_POPULAR_BOOKS}:{category}"

    @staticmethod
    def session(user_id: str) -> str:
        return f"{KEY_USER_SESSION}:{user_id}"


# =============================================================================
# LAYER 2: OBSERVABILITY
# =============================================================================


class CacheObserver:
    """
    Tracks cache hits/misses and logs operations.

    Logging Strategy:
    - Hit: STAGE-CACHE.1
    - Miss: STAGE-CACHE.2
    - Set: STAGE-CACHE.3
    - Invalidate: STAGE-CACHE.4
    """

    def __init__(self, logger_instance=None):
        self._logger = logger_instance or logger
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._invalidations = 0

    def record_get(self, key: str, hit: bool) -> None:
        if hit:
            self._hits += 1
            log_stage(self._logger, "CACHE.1", "Cache hit", level="debug", cache_key=key)
        else:
            self._misses += 1
            log_stage(self._logger, "CACHE.2", "Cache miss", level="debug", cache_key=key)

    def record_set(self, key: str, ttl: int) -> None:
        self._sets += 1
        log_stage(self._logger, "CACHE.3", "Cache set", level="debug", cache_key=key, ttl=ttl)

    def record_invalidation(self, target: str, removed: int) -> None:
        self._invalidations += 1
        log_stage(self._logger, "CACHE.4", "Cache invalidated", target=target, removed=removed)

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "sets": self._sets,
            "invalidations": self._invalidations,
            "hit_rate": round(self._hits / total, 4) if total else 0.0,
        }


# =============================================================================
# LAYER 3: PUBLIC API
# =============================================================================


class CacheService:
    """
    Look-aside cache for the book marketplace.

    Every method inherits the connection manager's fail-open contract:
    with Redis down, reads return None/empty and writes return False.

    Usage:
        cache = CacheService(connection)
        books = await cache.get_search_results("atomic habits", {"genre": "self-help"})
        if books is None:
            books = await store.search(...)
            await cache.set_search_results("atomic habits", {"genre": "self-help"}, books)
    """

    def __init__(self, connection: ConnectionManager, settings: Settings | None = None):
        self._connection = connection
        self._settings = settings or get_settings()
        self._enabled = self._settings.cache.ENABLE_CACHING
        self._observer = CacheObserver()
        self.keys = CacheKeyBuilder()

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def enabled(self) -> bool:
        return self._enabled

    # -------------------------------------------------------------------------
    # Generic operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """Get a cached value, or None on miss/degraded."""
        if not self.enabled:
            return None
        value = await self._connection.get(key)
        self._observer.record_get(key, value is not None)
        return value

    async def set(self, key: str, value: Any, ttl: CacheTTL = CacheTTL.DEFAULT) -> bool:
        """
        Store a value under a TTL class.

        Raises:
            TypeError: If ``ttl`` is not a CacheTTL member
        """
        if not isinstance(ttl, CacheTTL):
            raise TypeError(f"ttl must be a CacheTTL class, got {ttl!r}")
        if not self.enabled:
            return False
        written = await self._connection.set(key, value, ttl=int(ttl))
        if written:
            self._observer.record_set(key, int(ttl))
        return written

    async def delete(self, key: str) -> bool:
        removed = await self._connection.delete(key)
        if removed:
            self._observer.record_invalidation(key, removed)
        return bool(removed)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]] | Callable[[], Any],
        ttl: CacheTTL = CacheTTL.DEFAULT,
    ) -> Any:
        """
        Look-aside read: return the cached value or load, cache and return it.

        ``None`` results are not cached so a later read retries the source.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = loader()
        if inspect.isawaitable(value):
            value = await value

        if value is not None:
            await self.set(key, value, ttl)
        return value

    # -------------------------------------------------------------------------
    # Popular books
    # -------------------------------------------------------------------------

    async def get_popular_books(self, category: str = DEFAULT_POPULAR_CATEGORY) -> list | None:
        return await self.get(self.keys.popular(category))

    async def set_popular_books(self, books: list, category: str = DEFAULT_POPULAR_CATEGORY) -> bool:
        return await self.set(self.keys.popular(category), books, CacheTTL.POPULAR)

    # -------------------------------------------------------------------------
    # Search results
    # -------------------------------------------------------------------------

    def create_search_cache_key(self, query: str, filters: dict[str, Any] | None = None) -> str:
        return self.keys.search(query, filters)

    async def get_search_results(self, query: str, filters: dict[str, Any] | None = None) -> list | None:
        return await self.get(self.keys.search(query, filters))

    async def set_search_results(
        self, query: str, filters: dict[str, Any] | None, results: list
    ) -> bool:
        return await self.set(self.keys.search(query, filters), results, CacheTTL.SEARCH)

    # -------------------------------------------------------------------------
    # Nearby books
    # -------------------------------------------------------------------------

    async def get_nearby_books(
        self, latitude: float, longitude: float, radius: float = DEFAULT_NEARBY_RADIUS_KM
    ) -> list | None:
        return await self.get(self.keys.nearby(latitude, longitude, radius))

    async def set_nearby_books(
        self, latitude: float, longitude: float, radius: float, books: list
    ) -> bool:
        return await self.set(self.keys.nearby(latitude, longitude, radius), books, CacheTTL.GEO)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def get_user_session(self, user_id: str) -> dict | None:
        return await self.get(self.keys.session(user_id))

    async def set_user_session(self, user_id: str, session_data: dict) -> bool:
        return await self.set(self.keys.session(user_id), session_data, CacheTTL.SESSION)

    async def delete_user_session(self, user_id: str) -> bool:
        return await self.delete(self.keys.session(user_id))

    # -------------------------------------------------------------------------
    # Online presence
    # -------------------------------------------------------------------------

    async def add_online_user(self, user_id: str) -> bool:
        """Add a user to the presence set and refresh the whole set's TTL."""
        await self._connection.sadd(KEY_ONLINE_USERS, str(user_id))
        return await self._connection.expire(KEY_ONLINE_USERS, int(CacheTTL.ONLINE_USERS))

    async def remove_online_user(self, user_id: str) -> bool:
        removed = await self._connection.srem(KEY_ONLINE_USERS, str(user_id))
        await self._connection.expire(KEY_ONLINE_USERS, int(CacheTTL.ONLINE_USERS))
        return bool(removed)

    async def get_online_users(self) -> list[str]:
        return sorted(await self._connection.smembers(KEY_ONLINE_USERS))

    async def count_online_users(self) -> int:
        return await self._connection.scard(KEY_ONLINE_USERS)

    # -------------------------------------------------------------------------
    # Community stats
    # -------------------------------------------------------------------------

    async def get_community_stats(self) -> dict | None:
        return await self.get(KEY_COMMUNITY_STATS)

    async def set_community_stats(self, stats: dict) -> bool:
        return await self.set(KEY_COMMUNITY_STATS, stats, CacheTTL.STATS)

    # -------------------------------------------------------------------------
    # Geospatial index
    # -------------------------------------------------------------------------

    async def add_book_location(self, book_id: str, longitude: float, latitude: float) -> bool:
        """Index a book's location. Re-adding a book moves it."""
        await self._connection.geo_add(KEY_GEO_BOOKS, longitude, latitude, str(book_id))
        return self._connection.is_connected

    async def find_nearby_books_geo(
        self, longitude: float, latitude: float, radius_km: float = DEFAULT_NEARBY_RADIUS_KM
    ) -> list[dict[str, Any]]:
        rows = await self._connection.geo_radius(KEY_GEO_BOOKS, longitude, latitude, radius_km, unit="km")
        return [{"book_id": member, "distance_km": distance} for member, distance in rows]

    async def add_user_location(self, user_id: str, longitude: float, latitude: float) -> bool:
        """Index a user's last known location. Re-adding a user moves them."""
        await self._connection.geo_add(KEY_GEO_USERS, longitude, latitude, str(user_id))
        return self._connection.is_connected

    async def find_nearby_users(
        self, longitude: float, latitude: float, radius_km: float = DEFAULT_NEARBY_RADIUS_KM
    ) -> list[dict[str, Any]]:
        rows = await self._connection.geo_radius(KEY_GEO_USERS, longitude, latitude, radius_km, unit="km")
        return [{"user_id": member, "distance_km": distance} for member, distance in rows]

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    async def invalidate_book_caches(self) -> int:
        """
        Drop every popular, search and nearby entry.

        Any book write clears the whole family; no per-book index is kept.
        """
        removed = 0
        for pattern in BOOK_CACHE_PATTERNS:
            removed += await self._connection.flush_pattern(pattern)
        self._observer.record_invalidation("books", removed)
        return removed

    async def invalidate_user_caches(self, user_id: str) -> None:
        await self.delete_user_session(user_id)
        await self.remove_online_user(user_id)
        self._observer.record_invalidation(f"user:{user_id}", 1)

    async def flush_pattern(self, pattern: str) -> int:
        removed = await self._connection.flush_pattern(pattern)
        self._observer.record_invalidation(pattern, removed)
        return removed

    # -------------------------------------------------------------------------
    # Warming, health, stats
    # -------------------------------------------------------------------------

    async def warm_cache(self, source: WarmupSource) -> dict[str, int]:
        from bookhive.infrastructure.cache.cache_warmer import CacheWarmer

        return await CacheWarmer(self, source).warm()

    async def get_health_status(self) -> dict[str, Any]:
        return {
            "connected": await self._connection.ping(),
            "onlineUsers": await self.count_online_users(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def stats(self) -> dict[str, Any]:
        return self._observer.get_stats()
