"""
Cache Warmer

Pre-populates the hottest cache families from the source of truth so the
first requests after a deploy (or a Redis flush) do not all miss.

Sections:
    1. Popular books: "all" plus each warm-up category
    2. Community stats
    3. Book locations (geo index)
    4. Common search queries

Each section is independent: a failing section is logged and the rest
still run.
"""

from bookhive.core.config.constants import DEFAULT_POPULAR_CATEGORY, POPULAR_CATEGORIES
from bookhive.core.interfaces import WarmupSource
from bookhive.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


class CacheWarmer:
    """
    Fills the cache from a WarmupSource.

    Usage:
        counts = await CacheWarmer(cache, source).warm()
        # {"popular": 6, "stats": 1, "locations": 120, "searches": 8}
    """

    def __init__(self, cache, source: WarmupSource):
        self._cache = cache
        self._source = source

    async def warm(self) -> dict[str, int]:
        """Run every section. Returns the number of entries written per section."""
        log_stage(logger, "WARM.0", "Cache warming started")

        if not self._cache.connection.is_connected:
            logger.warning("Redis not connected, skipping cache warming", stage="WARM.0")
            return {"popular": 0, "stats": 0, "locations": 0, "searches": 0}

        counts = {
            "popular": await self._section("popular", self._warm_popular),
            "stats": await self._section("stats", self._warm_stats),
            "locations": await self._section("locations", self._warm_locations),
            "searches": await self._section("searches", self._warm_searches),
        }

        log_stage(logger, "WARM.5", "Cache warming completed", **counts)
        return counts

    async def _section(self, name: str, runner) -> int:
        try:
            written = await runner()
        except Exception as e:
            logger.error(
                "Cache warming section failed",
                stage="WARM.E",
                section=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0
        logger.info("Cache warming section done", section=name, written=written)
        return written

    async def _warm_popular(self) -> int:
        written = 0
        for category in (DEFAULT_POPULAR_CATEGORY, *POPULAR_CATEGORIES):
            books = await self._source.popular_books(category)
            if books and await self._cache.set_popular_books(books, category):
                written += 1
        return written

    async def _warm_stats(self) -> int:
        stats = await self._source.community_stats()
        if not stats:
            return 0
        return int(await self._cache.set_community_stats(stats))

    async def _warm_locations(self) -> int:
        written = 0
        for book_id, longitude, latitude in await self._source.book_locations():
            if await self._cache.add_book_location(book_id, longitude, latitude):
                written += 1
        return written

    async def _warm_searches(self) -> int:
        written = 0
        for query, filters, results in await self._source.common_searches():
            if results and await self._cache.set_search_results(query, filters, results):
                written += 1
        return written
