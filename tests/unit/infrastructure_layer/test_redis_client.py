"""
Unit Tests for ConnectionManager

Covers connection lifecycle, the startup self-test and the fail-open
contract of every primitive.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from bookhive.infrastructure.cache.redis_client import ConnectionManager


@pytest.mark.unit
class TestConnectionLifecycle:
    @pytest.mark.asyncio
    async def test_connect_runs_self_test(self, test_settings, fake_redis):
        manager = ConnectionManager(test_settings, client_factory=lambda url: fake_redis)

        client = await manager.connect()

        assert client is fake_redis
        assert manager.is_connected
        # Self-test key is cleaned up
        assert await fake_redis.keys("*") == []
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_connect_without_url_runs_degraded(self, disconnected_connection):
        assert await disconnected_connection.connect() is None
        assert disconnected_connection.is_connected is False
        assert disconnected_connection.client is None

    @pytest.mark.asyncio
    async def test_connect_gives_up_after_retries(self, test_settings):
        broken = MagicMock()
        broken.ping = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        broken.aclose = AsyncMock()
        manager = ConnectionManager(test_settings, client_factory=lambda url: broken)

        assert await manager.connect() is None
        assert manager.is_connected is False
        broken.aclose.assert_awaited()

    @pytest.mark.asyncio
    async def test_self_test_mismatch_is_a_failed_attempt(self, test_settings, fake_redis):
        fake_redis.get = AsyncMock(return_value="something-else")
        manager = ConnectionManager(test_settings, client_factory=lambda url: fake_redis)

        assert await manager.connect() is None
        assert manager.is_connected is False

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, connection):
        await connection.disconnect()
        await connection.disconnect()
        assert connection.is_connected is False


@pytest.mark.unit
class TestPrimitives:
    @pytest.mark.asyncio
    async def test_json_round_trip(self, connection):
        assert await connection.set("books:popular:all", [{"id": "1", "title": "Dune"}], ttl=60)
        assert await connection.get("books:popular:all") == [{"id": "1", "title": "Dune"}]
        assert 0 < await connection.ttl("books:popular:all") <= 60

    @pytest.mark.asyncio
    async def test_set_nx_does_not_overwrite(self, connection):
        assert await connection.set("k", 1, nx=True)
        assert await connection.set("k", 2, nx=True) is False
        assert await connection.get("k") == 1

    @pytest.mark.asyncio
    async def test_malformed_payload_is_a_miss(self, connection, fake_redis):
        await fake_redis.set("broken", "{not json")
        assert await connection.get("broken") is None

    @pytest.mark.asyncio
    async def test_unserializable_value_is_not_written(self, connection):
        assert await connection.set("k", object()) is False
        assert await connection.exists("k") is False

    @pytest.mark.asyncio
    async def test_incr_keeps_ttl(self, connection):
        await connection.set("counter", 1, ttl=100)
        assert await connection.incr("counter") == 2
        assert await connection.ttl("counter") > 0

    @pytest.mark.asyncio
    async def test_flush_pattern_only_touches_matches(self, connection):
        await connection.set("books:search:aaaa", [])
        await connection.set("books:search:bbbb", [])
        await connection.set("user:session:1", {})

        assert await connection.flush_pattern("books:search:*") == 2
        assert await connection.keys("*") == ["user:session:1"]

    @pytest.mark.asyncio
    async def test_set_members_round_trip(self, connection):
        await connection.sadd("users:online", "u1", "u2")
        await connection.srem("users:online", "u2")

        assert await connection.smembers("users:online") == {"u1"}
        assert await connection.scard("users:online") == 1

    @pytest.mark.asyncio
    async def test_geo_radius_nearest_first(self, connection):
        await connection.geo_add("geo:books", -74.0060, 40.7128, "near")
        await connection.geo_add("geo:books", -73.9857, 40.7484, "far")

        rows = await connection.geo_radius("geo:books", -74.0060, 40.7128, 10)

        assert [member for member, _ in rows] == ["near", "far"]
        assert rows[0][1] < rows[1][1]

    @pytest.mark.asyncio
    async def test_health_check_reports_latency(self, connection):
        health = await connection.health_check()
        assert health["status"] == "healthy"
        assert health["ping_latency_ms"] is not None


@pytest.mark.unit
class TestFailOpen:
    @pytest.mark.asyncio
    async def test_disconnected_primitives_return_defaults(self, disconnected_connection):
        conn = disconnected_connection

        assert await conn.get("k") is None
        assert await conn.set("k", 1) is False
        assert await conn.delete("k") == 0
        assert await conn.incr("k") is None
        assert await conn.ttl("k") == -2
        assert await conn.keys("*") == []
        assert await conn.smembers("s") == set()
        assert await conn.geo_radius("geo:books", 0, 0, 10) == []
        assert await conn.publish("socket:user:1", {"event": "x"}) == 0
        assert await conn.ping() is False

    @pytest.mark.asyncio
    async def test_health_check_when_degraded(self, disconnected_connection):
        health = await disconnected_connection.health_check()
        assert health == {"status": "degraded", "connected": False, "ping_latency_ms": None}

    @pytest.mark.asyncio
    async def test_command_error_fails_open(self, connection, fake_redis):
        fake_redis.get = AsyncMock(side_effect=RedisError("READONLY"))
        fake_redis.incr = AsyncMock(side_effect=TimeoutError())

        assert await connection.get("k") is None
        assert await connection.incr("k") is None
