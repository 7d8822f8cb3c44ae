"""
Unit Tests for the fixed-window RateLimiter

Tests window counting, rejection, expiry, fail-open behaviour and the
FastAPI dependency.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from bookhive.application.app import rate_limit_handler
from bookhive.core.exceptions import RateLimitExceededError
from bookhive.rate_limiting import RateLimiter, RateLimitResult, get_user_identifier, rate_limit


@pytest.mark.unit
class TestRateWindow:
    @pytest.mark.asyncio
    async def test_sixth_call_is_rejected(self, connection, test_settings):
        limiter = RateLimiter(connection, limits={"auth": (5, 900)}, settings=test_settings)

        results = [await limiter.check_rate_limit("ip:1.2.3.4", "auth") for _ in range(6)]

        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
        assert results[5].remaining == 0
        assert 0 < results[5].retry_after <= 900
        assert results[5].message == "Rate limit exceeded. Try again in 15 minutes."

    @pytest.mark.asyncio
    async def test_window_expiry_allows_again(self, connection, test_settings):
        limiter = RateLimiter(connection, limits={"auth": (5, 1)}, settings=test_settings)

        for _ in range(5):
            assert (await limiter.check_rate_limit("u1", "auth")).allowed
        assert not (await limiter.check_rate_limit("u1", "auth")).allowed

        await asyncio.sleep(1.1)

        result = await limiter.check_rate_limit("u1", "auth")
        assert result.allowed
        assert result.remaining == 4

    @pytest.mark.asyncio
    async def test_ttl_is_set_once_per_window(self, connection, fake_redis, test_settings):
        limiter = RateLimiter(connection, limits={"search": (100, 3600)}, settings=test_settings)

        await limiter.check_rate_limit("u1", "search")
        await fake_redis.expire("ratelimit:search:u1", 50)
        await limiter.check_rate_limit("u1", "search")

        assert await fake_redis.ttl("ratelimit:search:u1") <= 50

    @pytest.mark.asyncio
    async def test_identifiers_and_classes_are_independent(self, connection, test_settings):
        limiter = RateLimiter(connection, limits={"auth": (1, 900), "upload": (1, 900)}, settings=test_settings)

        assert (await limiter.check_rate_limit("u1", "auth")).allowed
        assert (await limiter.check_rate_limit("u2", "auth")).allowed
        assert (await limiter.check_rate_limit("u1", "upload")).allowed
        assert not (await limiter.check_rate_limit("u1", "auth")).allowed

    @pytest.mark.asyncio
    async def test_counter_without_expiry_gets_one_on_reject(self, connection, fake_redis, test_settings):
        limiter = RateLimiter(connection, limits={"auth": (5, 900)}, settings=test_settings)
        await fake_redis.set("ratelimit:auth:u1", "5")

        result = await limiter.check_rate_limit("u1", "auth")

        assert not result.allowed
        assert 0 < await fake_redis.ttl("ratelimit:auth:u1") <= 900

    @pytest.mark.asyncio
    async def test_unknown_class_allows(self, rate_limiter):
        result = await rate_limiter.check_rate_limit("u1", "bulk-export")

        assert result.allowed
        assert result.remaining == 999
        assert set(result.headers()) == {"X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"}
        assert result.headers()["X-RateLimit-Limit"] == "999"

    @pytest.mark.asyncio
    async def test_reset_and_status(self, rate_limiter):
        await rate_limiter.check_rate_limit("u1", "upload")
        await rate_limiter.check_rate_limit("u1", "upload")

        status = await rate_limiter.get_rate_limit_status("u1", "upload")
        assert status["current"] == 2
        assert status["remaining"] == 8

        assert await rate_limiter.reset_rate_limit("u1", "upload")
        assert (await rate_limiter.get_rate_limit_status("u1", "upload"))["current"] == 0


@pytest.mark.unit
class TestRateLimiterFailOpen:
    @pytest.mark.asyncio
    async def test_disconnected_allows(self, disconnected_connection, degraded_settings):
        limiter = RateLimiter(disconnected_connection, settings=degraded_settings)

        result = await limiter.check_rate_limit("u1", "auth")

        assert result.allowed
        assert result.remaining == 5
        assert result.headers()["X-RateLimit-Limit"] == "5"
        assert "X-RateLimit-Reset" in result.headers()

    @pytest.mark.asyncio
    async def test_incr_failure_allows(self, connection, fake_redis, test_settings):
        limiter = RateLimiter(connection, limits={"auth": (5, 900)}, settings=test_settings)
        await limiter.check_rate_limit("u1", "auth")
        fake_redis.incr = AsyncMock(side_effect=ConnectionError("reset by peer"))

        result = await limiter.check_rate_limit("u1", "auth")

        assert result.allowed
        assert result.reset_time is not None

    def test_flags_read_once(self, disconnected_connection, degraded_settings):
        settings = degraded_settings.model_copy()
        limiter = RateLimiter(disconnected_connection, settings=settings)

        settings.RATE_LIMIT_ENABLED = False
        settings.RATE_LIMIT_TRUST_USER_HEADER = False

        assert limiter.enabled is True
        assert limiter.trust_user_header is True

    @pytest.mark.asyncio
    async def test_status_is_none_when_degraded(self, disconnected_connection, degraded_settings):
        limiter = RateLimiter(disconnected_connection, settings=degraded_settings)
        assert await limiter.get_rate_limit_status("u1", "auth") is None


@pytest.mark.unit
class TestRateLimitResultHeaders:
    def test_headers_omit_unknowns(self):
        assert RateLimitResult(allowed=True, remaining=999).headers() == {"X-RateLimit-Remaining": "999"}

    def test_headers_full(self):
        from datetime import datetime, timezone

        reset = datetime(2026, 1, 1, tzinfo=timezone.utc)
        headers = RateLimitResult(allowed=True, remaining=3, reset_time=reset, limit=5).headers()

        assert headers["X-RateLimit-Limit"] == "5"
        assert headers["X-RateLimit-Remaining"] == "3"
        assert headers["X-RateLimit-Reset"] == reset.isoformat()


@pytest.mark.unit
class TestRateLimitDependency:
    def _app(self, limiter):
        app = FastAPI()
        app.state.rate_limiter = limiter
        app.add_exception_handler(RateLimitExceededError, rate_limit_handler)

        @app.post("/auth/login", dependencies=[Depends(rate_limit("auth"))])
        async def login():
            return {"ok": True}

        return app

    def test_limit_headers_and_429(self, test_settings):
        limiter = RateLimiter(AsyncMock(), settings=test_settings)
        allowed = RateLimitResult(allowed=True, remaining=4, limit=5)
        rejected = RateLimitResult(
            allowed=False, remaining=0, limit=5, retry_after=600,
            message="Rate limit exceeded. Try again in 10 minutes.",
        )
        limiter.check_rate_limit = AsyncMock(side_effect=[allowed, rejected])
        client = TestClient(self._app(limiter))

        ok = client.post("/auth/login")
        assert ok.status_code == 200
        assert ok.headers["X-RateLimit-Remaining"] == "4"
        assert ok.headers["X-RateLimit-Limit"] == "5"

        blocked = client.post("/auth/login")
        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "600"
        assert blocked.json() == {
            "error": "Rate limit exceeded",
            "message": "Rate limit exceeded. Try again in 10 minutes.",
            "retryAfter": 600,
        }

    def test_identifier_prefers_user_header(self, test_settings):
        limiter = RateLimiter(AsyncMock(), settings=test_settings)
        limiter.check_rate_limit = AsyncMock(return_value=RateLimitResult(allowed=True, remaining=1))
        client = TestClient(self._app(limiter))

        client.post("/auth/login", headers={"X-User-ID": "user-9"})

        limiter.check_rate_limit.assert_awaited_once_with("user-9", "auth")

    def test_get_user_identifier_falls_back_to_ip(self):
        request = MagicMock()
        request.state = type("State", (), {})()
        request.headers = {}
        request.client.host = "10.0.0.1"

        assert get_user_identifier(request) == "ip:10.0.0.1"
