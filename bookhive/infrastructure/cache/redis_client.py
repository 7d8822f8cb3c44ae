"""
Redis Connection Manager - Fail-Open Primitives

Architecture:
    ConnectionManager (Public API)
        ├── Connection lifecycle (connect with backoff, self-test, disconnect)
        ├── Degrade-safe primitives (get/set/del/exists/keys/sets/geo/pubsub)
        └── Health monitoring (ping latency)

Resilience Contract:
    Every primitive checks the connected flag first. When Redis is down (or
    a command errors or times out) getters return None/empty, setters return
    False, and nothing propagates to callers. The application stays correct,
    just slower, because the source of truth is always reachable.

    The manager is constructed once by the application root and passed to the
    cache service, rate limiter and job queue.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import orjson
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bookhive.core.config.constants import (
    CONNECTION_TEST_KEY,
    CONNECTION_TEST_TTL,
    CONNECTION_TEST_VALUE,
)
from bookhive.core.config.settings import Settings, get_settings
from bookhive.core.exceptions import CacheConnectionError, CacheSerializationError
from bookhive.core.logging.logger import get_logger

logger = get_logger(__name__)

# Errors that mean "the broker is unavailable right now"
BROKER_ERRORS = (RedisError, OSError, asyncio.TimeoutError)

ClientFactory = Callable[[str], redis.Redis]


class ConnectionManager:
    """
    Owns the single Redis connection and exposes fail-open primitives.

    Connection Policy:
    - URL from REDIS_URL (rediss:// enables TLS)
    - Connect timeout 10s, command timeout 5s, TCP keep-alive
    - Startup round-trip: PING, then SET/GET/DEL self-test
    - Exponential backoff between attempts, up to REDIS_MAX_RETRIES
    - After the ceiling: stay disconnected, process keeps running

    Usage:
        connection = ConnectionManager(settings)
        await connection.connect()          # returns client or None
        await connection.set("k", {"a": 1}, ttl=60)
        value = await connection.get("k")   # None when degraded
    """

    def __init__(self, settings: Settings | None = None, client_factory: ClientFactory | None = None):
        """
        Initialize connection manager.

        Args:
            settings: Application settings (defaults to global settings)
            client_factory: Optional factory building a client from the URL.
                            Used to inject an in-memory broker in tests.
        """
        self._settings = settings or get_settings()
        self._client_factory = client_factory
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None
        self._is_connected = False

    # =========================================================================
    # LAYER 1: CONNECTION LIFECYCLE
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        """True once the startup self-test passed and until disconnect."""
        return self._is_connected and self._client is not None

    @property
    def client(self) -> redis.Redis | None:
        """Raw client for components that manage their own error handling."""
        return self._client if self._is_connected else None

    async def connect(self) -> redis.Redis | None:
        """
        Connect to Redis, retrying with exponential backoff.

        STAGE-REDIS.2: Connection establishment

        Returns:
            Connected client, or None when running degraded
        """
        if self.is_connected:
            return self._client

        cfg = self._settings.redis
        if not cfg.REDIS_URL:
            logger.warning(
                "REDIS_URL not configured, running without cache and job queues",
                stage="REDIS.1",
            )
            return None

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(cfg.REDIS_MAX_RETRIES, 1)),
            wait=wait_exponential(multiplier=cfg.REDIS_RETRY_BASE_DELAY_MS / 1000.0, max=60),
            retry=retry_if_exception_type(CacheConnectionError),
            before_sleep=lambda retry_state: logger.warning(
                "Redis connection attempt failed, retrying",
                stage="REDIS.2",
                attempt=retry_state.attempt_number,
                delay=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
            ),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self._open(cfg.REDIS_URL)
        except RetryError as e:
            logger.error(
                "Redis unavailable after max retries, continuing in degraded mode",
                stage="REDIS.2",
                attempts=cfg.REDIS_MAX_RETRIES,
                error=str(e.last_attempt.exception()),
            )
            return None

        return self._client

    async def _open(self, url: str) -> None:
        """
        One connection attempt: build client, ping, run the self-test.

        Raises:
            CacheConnectionError: If any step fails
        """
        cfg = self._settings.redis
        try:
            if self._client_factory is not None:
                self._client = self._client_factory(url)
            else:
                self._pool = ConnectionPool.from_url(
                    url,
                    max_connections=cfg.REDIS_MAX_CONNECTIONS,
                    socket_connect_timeout=cfg.REDIS_CONNECT_TIMEOUT,
                    socket_timeout=cfg.REDIS_COMMAND_TIMEOUT,
                    socket_keepalive=True,
                    retry_on_timeout=True,
                    health_check_interval=cfg.REDIS_HEALTH_CHECK_INTERVAL,
                    decode_responses=True,
                )
                self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            # STAGE-REDIS.2.1: Scoped self-test
            await self._client.set(CONNECTION_TEST_KEY, CONNECTION_TEST_VALUE, ex=CONNECTION_TEST_TTL)
            echoed = await self._client.get(CONNECTION_TEST_KEY)
            await self._client.delete(CONNECTION_TEST_KEY)
            if echoed != CONNECTION_TEST_VALUE:
                raise CacheConnectionError(
                    "Redis self-test returned unexpected value",
                    details={"expected": CONNECTION_TEST_VALUE, "received": echoed},
                )

        except BROKER_ERRORS as e:
            await self._close_quietly()
            raise CacheConnectionError.from_exception(e, message=f"Failed to connect to Redis: {e}")
        except CacheConnectionError:
            await self._close_quietly()
            raise

        self._is_connected = True
        logger.info(
            "Redis connected successfully",
            stage="REDIS.2",
            tls=url.startswith("rediss://"),
            max_connections=cfg.REDIS_MAX_CONNECTIONS,
        )

    async def _close_quietly(self) -> None:
        client, pool = self._client, self._pool
        self._client, self._pool = None, None
        self._is_connected = False
        try:
            if client is not None:
                await client.aclose()
            if pool is not None:
                await pool.disconnect()
        except BROKER_ERRORS as e:
            logger.debug("Error closing half-open Redis connection", error=str(e))

    async def disconnect(self) -> None:
        """
        Close Redis client and pool.

        STAGE-REDIS.3: Connection cleanup

        Closing the client waits for in-flight commands on its connections.
        Safe to call more than once.
        """
        was_connected = self._is_connected
        await self._close_quietly()
        if was_connected:
            logger.info("Redis disconnected", stage="REDIS.3")

    # =========================================================================
    # LAYER 2: DEGRADE-SAFE PRIMITIVES
    # =========================================================================

    async def _run(
        self,
        operation: str,
        default: Any,
        command: Callable[[redis.Redis], Awaitable[Any]],
        key: str | None = None,
    ) -> Any:
        """Execute a command, returning ``default`` when down or on error."""
        if not self.is_connected:
            return default
        try:
            return await command(self._client)
        except BROKER_ERRORS as e:
            logger.warning(
                "Redis operation failed, failing open",
                stage="REDIS.4",
                operation=operation,
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return default

    async def get(self, key: str) -> Any:
        """Get and JSON-decode a value. Malformed payloads are a miss."""
        raw = await self._run("get", None, lambda c: c.get(key), key)
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning(
                "Discarding malformed cached payload",
                stage="REDIS.4",
                key=key,
                error=str(CacheSerializationError.from_exception(e)),
            )
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None, nx: bool = False) -> bool:
        """
        JSON-encode and store a value.

        Args:
            key: Cache key
            value: Any orjson-serializable value
            ttl: Expiry in seconds (None = no expiry)
            nx: Only set if the key does not exist

        Returns:
            True if the value was written
        """
        try:
            payload = orjson.dumps(value)
        except TypeError as e:
            logger.warning("Value is not serializable, skipping cache write", key=key, error=str(e))
            return False
        result = await self._run("set", False, lambda c: c.set(key, payload, ex=ttl, nx=nx), key)
        return bool(result)

    async def delete(self, *keys: str) -> int:
        """Delete keys. Returns number removed (0 when degraded)."""
        if not keys:
            return 0
        return await self._run("delete", 0, lambda c: c.delete(*keys), keys[0])

    async def exists(self, key: str) -> bool:
        return bool(await self._run("exists", 0, lambda c: c.exists(key), key))

    async def keys(self, pattern: str) -> list[str]:
        """List keys matching a glob pattern (SCAN based, non-blocking on the server)."""

        async def scan(c: redis.Redis) -> list[str]:
            return [k async for k in c.scan_iter(match=pattern, count=500)]

        return await self._run("keys", [], scan, pattern)

    async def flush_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern``. Returns number removed."""
        matched = await self.keys(pattern)
        if not matched:
            return 0
        return await self.delete(*matched)

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self._run("expire", False, lambda c: c.expire(key, seconds), key))

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds (-2 when missing or degraded)."""
        return await self._run("ttl", -2, lambda c: c.ttl(key), key)

    async def incr(self, key: str) -> int | None:
        """Atomic increment. Never changes the key's TTL. None when degraded."""
        return await self._run("incr", None, lambda c: c.incr(key), key)

    async def sadd(self, key: str, *members: str) -> int:
        return await self._run("sadd", 0, lambda c: c.sadd(key, *members), key)

    async def srem(self, key: str, *members: str) -> int:
        return await self._run("srem", 0, lambda c: c.srem(key, *members), key)

    async def smembers(self, key: str) -> "set[str]":
        return await self._run("smembers", set(), lambda c: c.smembers(key), key)

    async def scard(self, key: str) -> int:
        return await self._run("scard", 0, lambda c: c.scard(key), key)

    async def geo_add(self, key: str, longitude: float, latitude: float, member: str) -> int:
        """Add or move a member in a geospatial index."""
        return await self._run(
            "geoadd", 0, lambda c: c.geoadd(key, [longitude, latitude, member]), key
        )

    async def geo_radius(
        self, key: str, longitude: float, latitude: float, radius: float, unit: str = "km"
    ) -> list[tuple[str, float]]:
        """
        Members within ``radius`` of a point, nearest first.

        Returns:
            List of (member, distance) tuples
        """
        rows = await self._run(
            "georadius",
            [],
            lambda c: c.georadius(key, longitude, latitude, radius, unit=unit, withdist=True, sort="ASC"),
            key,
        )
        return [(member, float(distance)) for member, distance in rows]

    async def publish(self, channel: str, message: Any) -> int:
        """Publish a JSON message. Returns receiver count (0 when degraded)."""
        payload = message if isinstance(message, str | bytes) else orjson.dumps(message)
        return await self._run("publish", 0, lambda c: c.publish(channel, payload), channel)

    async def ping(self) -> bool:
        return bool(await self._run("ping", False, lambda c: c.ping()))

    # =========================================================================
    # LAYER 3: HEALTH MONITORING
    # =========================================================================

    async def health_check(self) -> dict[str, Any]:
        """
        Check connection health.

        Returns:
            Dict with status, connected flag and ping latency
        """
        if not self.is_connected:
            return {"status": "degraded", "connected": False, "ping_latency_ms": None}

        start = time.perf_counter()
        healthy = await self.ping()
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "status": "healthy" if healthy else "unhealthy",
            "connected": healthy,
            "ping_latency_ms": round(latency_ms, 2) if healthy else None,
        }
