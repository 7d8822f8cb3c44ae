"""
Rate Limiter

Fixed-window request limiting backed by Redis counters.

Features:
- Named limit classes (search, auth, upload, message, general)
- One counter per (class, identifier) with the window as its TTL
- Fail open: a missing or failing broker never blocks a request
- FastAPI dependency factory that sets X-RateLimit-* headers

Algorithm (per check):
1. Read the counter. At or above the limit -> reject, report the key's TTL
2. New key -> SET key 1 EX window NX (the TTL is set exactly once)
3. Existing key (or lost NX race) -> INCR, which never touches the TTL
4. INCR returning 1 means the key expired in between -> set the TTL again

A fixed window admits up to 2x the limit across a window boundary.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Request, Response

from bookhive.core.config.constants import (
    HEADER_RATE_LIMIT,
    HEADER_RATE_REMAINING,
    HEADER_RATE_RESET,
    HEADER_USER_ID,
    KEY_RATE_LIMIT,
    RATE_LIMITS,
    UNKNOWN_LIMIT_REMAINING,
    UNKNOWN_LIMIT_WINDOW,
    LimitClass,
)
from bookhive.core.config.settings import Settings, get_settings
from bookhive.core.exceptions import RateLimitExceededError
from bookhive.core.logging.logger import get_logger
from bookhive.infrastructure.cache.redis_client import ConnectionManager

logger = get_logger(__name__)


def _class_name(limit_class: str | LimitClass) -> str:
    return limit_class.value if isinstance(limit_class, LimitClass) else str(limit_class)


@dataclass
class RateLimitResult:
    """Outcome of one rate limit check."""

    allowed: bool
    remaining: int
    reset_time: datetime | None = None
    limit: int | None = None
    retry_after: int | None = None
    message: str | None = None

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* headers for this result."""
        headers = {HEADER_RATE_REMAINING: str(self.remaining)}
        if self.limit is not None:
            headers[HEADER_RATE_LIMIT] = str(self.limit)
        if self.reset_time is not None:
            headers[HEADER_RATE_RESET] = self.reset_time.isoformat()
        return headers


class RateLimiter:
    """
    Fixed-window limiter over the shared connection manager.

    Usage:
        limiter = RateLimiter(connection)
        result = await limiter.check_rate_limit("user-42", "search")
        if not result.allowed:
            ...
    """

    def __init__(
        self,
        connection: ConnectionManager,
        limits: dict[str, tuple[int, int]] | None = None,
        settings: Settings | None = None,
    ):
        self._connection = connection
        self._limits = dict(limits if limits is not None else RATE_LIMITS)
        self._settings = settings or get_settings()
        rate_settings = self._settings.rate_limit
        self._enabled = rate_settings.RATE_LIMIT_ENABLED
        self._trust_user_header = rate_settings.RATE_LIMIT_TRUST_USER_HEADER

    @property
    def limits(self) -> dict[str, tuple[int, int]]:
        return dict(self._limits)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def trust_user_header(self) -> bool:
        return self._trust_user_header

    @staticmethod
    def _key(identifier: str, limit_class: str) -> str:
        return f"{KEY_RATE_LIMIT}:{limit_class}:{identifier}"

    async def check_rate_limit(self, identifier: str, limit_class: str | LimitClass) -> RateLimitResult:
        """
        Count one request against ``identifier``'s window.

        Returns:
            RateLimitResult. ``allowed`` is True whenever the broker is
            unavailable.
        """
        limit_class = _class_name(limit_class)
        now = datetime.now(timezone.utc)
        rule = self._limits.get(limit_class)
        if rule is None:
            logger.error("Unknown rate limit class", limit_class=limit_class)
            return self._fail_open(UNKNOWN_LIMIT_REMAINING, UNKNOWN_LIMIT_WINDOW, now)

        max_requests, window = rule

        if not self._connection.is_connected:
            return self._fail_open(max_requests, window, now)

        key = self._key(identifier, limit_class)
        current = await self._connection.get(key)
        count = current if isinstance(current, int) else 0

        if count >= max_requests:
            return await self._reject(key, max_requests, window, now)

        new_count: int | None = None
        if count == 0 and await self._connection.set(key, 1, ttl=window, nx=True):
            new_count = 1
        else:
            new_count = await self._connection.incr(key)
            if new_count is None:
                return self._fail_open(max_requests, window, now)
            if new_count == 1:
                await self._connection.expire(key, window)

        if new_count > max_requests:
            # Lost a race against concurrent requests at the boundary
            return await self._reject(key, max_requests, window, now)

        ttl = window if new_count == 1 else await self._connection.ttl(key)
        if ttl < 0:
            ttl = window

        return RateLimitResult(
            allowed=True,
            remaining=max_requests - new_count,
            reset_time=now + timedelta(seconds=ttl),
            limit=max_requests,
        )

    async def _reject(self, key: str, max_requests: int, window: int, now: datetime) -> RateLimitResult:
        ttl = await self._connection.ttl(key)
        if ttl == -1:
            # Counter lost its expiry; never let it outlive a window
            await self._connection.expire(key, window)
            ttl = window
        elif ttl < 0:
            ttl = window

        logger.warning("Rate limit exceeded", key=key, retry_after=ttl)
        return RateLimitResult(
            allowed=False,
            remaining=0,
            reset_time=now + timedelta(seconds=ttl),
            limit=max_requests,
            retry_after=ttl,
            message=f"Rate limit exceeded. Try again in {math.ceil(ttl / 60)} minutes.",
        )

    @staticmethod
    def _fail_open(max_requests: int, window: int, now: datetime) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining=max_requests,
            reset_time=now + timedelta(seconds=window),
            limit=max_requests,
        )

    async def reset_rate_limit(self, identifier: str, limit_class: str | LimitClass) -> bool:
        """Admin reset of one window."""
        key = self._key(identifier, _class_name(limit_class))
        removed = await self._connection.delete(key)
        logger.info("Rate limit reset", key=key, removed=removed)
        return self._connection.is_connected

    async def get_rate_limit_status(
        self, identifier: str, limit_class: str | LimitClass
    ) -> dict[str, Any] | None:
        """Read a window without counting a request. None when degraded or unknown."""
        limit_class = _class_name(limit_class)
        rule = self._limits.get(limit_class)
        if rule is None or not self._connection.is_connected:
            return None

        key = self._key(identifier, limit_class)
        current = await self._connection.get(key)
        count = current if isinstance(current, int) else 0
        ttl = await self._connection.ttl(key)

        return {
            "current": count,
            "limit": rule[0],
            "remaining": max(rule[0] - count, 0),
            "reset_time": (
                (datetime.now(timezone.utc) + timedelta(seconds=ttl)).isoformat() if ttl > 0 else None
            ),
        }


# =============================================================================
# FASTAPI INTEGRATION
# =============================================================================

IdentifierExtractor = Callable[[Request], str]


def client_ip(request: Request) -> str:
    """Identify a caller by remote address."""
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


def get_user_identifier(request: Request, trust_header: bool = True) -> str:
    """
    Extract the caller identifier.

    Priority: request.state.user_id > X-User-ID header > remote IP
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id)

    if trust_header:
        header_user = request.headers.get(HEADER_USER_ID)
        if header_user:
            return header_user

    return client_ip(request)


def rate_limit(limit_class: str | LimitClass, identifier: IdentifierExtractor | None = None):
    """
    Build a FastAPI dependency enforcing ``limit_class``.

    Usage:
        @router.get("/books/search", dependencies=[Depends(rate_limit("search"))])
        async def search_books(...): ...

    Raises:
        RateLimitExceededError: When the window is exhausted (rendered as 429)
    """
    limit_name = _class_name(limit_class)

    async def dependency(request: Request, response: Response) -> RateLimitResult | None:
        limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if limiter is None or not limiter.enabled:
            return None

        if identifier is not None:
            caller = identifier(request)
        else:
            caller = get_user_identifier(
                request, trust_header=limiter.trust_user_header
            )

        result = await limiter.check_rate_limit(caller, limit_name)
        for name, value in result.headers().items():
            response.headers[name] = value

        if not result.allowed:
            raise RateLimitExceededError(
                result.message or "Rate limit exceeded",
                result=result,
                details={"limit_class": limit_name},
            )
        return result

    return dependency


search_limiter = rate_limit(LimitClass.SEARCH)
auth_limiter = rate_limit(LimitClass.AUTH, identifier=client_ip)
upload_limiter = rate_limit(LimitClass.UPLOAD)
message_limiter = rate_limit(LimitClass.MESSAGE)
general_limiter = rate_limit(LimitClass.GENERAL)
