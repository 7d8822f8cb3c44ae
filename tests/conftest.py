"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.

Redis is replaced by fakeredis' in-memory server, injected through
``ConnectionManager(client_factory=...)``. Each test gets its own server.
"""

import os
import sys
from datetime import datetime
from unittest.mock import AsyncMock

import fakeredis
import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from bookhive.core.config.settings import Settings  # noqa: E402
from bookhive.infrastructure.cache.cache_service import CacheService  # noqa: E402
from bookhive.infrastructure.cache.redis_client import ConnectionManager  # noqa: E402
from bookhive.infrastructure.message_queue import JobQueue  # noqa: E402
from bookhive.rate_limiting import RateLimiter  # noqa: E402

TEST_REDIS_URL = "redis://fakeredis:6379/0"


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at the in-memory broker, with in-process workers off."""
    return Settings(
        _env_file=None,
        REDIS_URL=TEST_REDIS_URL,
        REDIS_MAX_RETRIES=1,
        REDIS_RETRY_BASE_DELAY_MS=1,
        WORKER_ENABLED=False,
        WORKER_POLL_INTERVAL_MS=10,
        WORKER_SHUTDOWN_TIMEOUT_SECONDS=2.0,
        LOG_FORMAT="console",
        ENVIRONMENT="test",
        TEMP_UPLOAD_DIR=str(tmp_path / "temp"),
        MEDIA_ROOT=str(tmp_path / "media"),
        MEDIA_BASE_URL="http://testserver/media",
    )


@pytest.fixture
def degraded_settings(test_settings):
    """Same settings without a broker URL."""
    return test_settings.model_copy(update={"REDIS_URL": None})


# ============================================================================
# Broker Fixtures
# ============================================================================


@pytest.fixture
def fake_redis():
    """Isolated in-memory Redis speaking the asyncio client API."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
async def connection(test_settings, fake_redis):
    """Connected ConnectionManager over fakeredis."""
    manager = ConnectionManager(test_settings, client_factory=lambda url: fake_redis)
    await manager.connect()
    yield manager
    await manager.disconnect()


@pytest.fixture
def disconnected_connection(degraded_settings):
    """ConnectionManager that never connected (no REDIS_URL)."""
    return ConnectionManager(degraded_settings)


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def cache_service(connection, test_settings):
    return CacheService(connection, test_settings)


@pytest.fixture
def degraded_cache(disconnected_connection, degraded_settings):
    return CacheService(disconnected_connection, degraded_settings)


@pytest.fixture
def rate_limiter(connection, test_settings):
    return RateLimiter(connection, settings=test_settings)


@pytest.fixture
def job_queue(connection):
    return JobQueue(connection)


# ============================================================================
# Collaborator Doubles
# ============================================================================


class FakeUserStore:
    def __init__(self, expired_tokens: int = 0, inactive_users: int = 0):
        self.expired_tokens = expired_tokens
        self.inactive_users = inactive_users
        self.cutoffs: list[datetime] = []

    async def clear_expired_password_resets(self, cutoff: datetime) -> int:
        self.cutoffs.append(cutoff)
        return self.expired_tokens

    async def deactivate_inactive_users(self, cutoff: datetime) -> int:
        self.cutoffs.append(cutoff)
        return self.inactive_users


class FakeNotificationStore:
    def __init__(self, old_read: int = 0):
        self.old_read = old_read
        self.cutoffs: list[datetime] = []

    async def delete_read_before(self, cutoff: datetime) -> int:
        self.cutoffs.append(cutoff)
        return self.old_read


class FakeBorrowRequestStore:
    def __init__(self, closed: int = 0):
        self.closed = closed
        self.calls: list[tuple[datetime, tuple[str, ...]]] = []

    async def delete_closed_before(self, cutoff: datetime, statuses) -> int:
        self.calls.append((cutoff, tuple(statuses)))
        return self.closed


@pytest.fixture
def user_store():
    return FakeUserStore(expired_tokens=4, inactive_users=3)


@pytest.fixture
def notification_store():
    return FakeNotificationStore(old_read=2)


@pytest.fixture
def borrow_request_store():
    return FakeBorrowRequestStore(closed=5)


@pytest.fixture
def mock_mail_transport():
    transport = AsyncMock()
    transport.send = AsyncMock(return_value="<msg-1@bookhive.test>")
    return transport


@pytest.fixture
def mock_socket_emitter():
    emitter = AsyncMock()
    emitter.emit_to_user = AsyncMock(return_value=1)
    return emitter


@pytest.fixture
def mock_push_gateway():
    gateway = AsyncMock()
    gateway.push = AsyncMock(return_value={"delivered": True})
    return gateway


@pytest.fixture
def mock_image_uploader():
    uploader = AsyncMock()
    uploader.upload = AsyncMock(
        return_value={"secure_url": "https://cdn.test/books/cover.jpg", "public_id": "books/cover", "bytes": 1234}
    )
    return uploader
