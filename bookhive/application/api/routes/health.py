"""
Health Check Routes
===================

- ``GET /health``: overall status with per-component detail
- ``GET /health/cache``: cache connectivity and online user count
- ``GET /health/queues``: counts for every job queue
- ``GET /health/queues/{name}``: counts for one queue (404 when unknown)

A missing or unreachable Redis reports ``degraded``, never a 5xx: the API
keeps serving from the primary store while cache and queues are down.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from bookhive.application.api.dependencies import (
    CacheServiceDep,
    ConnectionDep,
    JobQueueDep,
    SettingsDep,
)
from bookhive.core.exceptions import UnknownQueueError

router = APIRouter(prefix="/health", tags=["Health"])


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class HealthResponse(BaseModel):
    status: str  # "healthy" or "degraded"
    timestamp: str
    version: str
    components: dict | None = None


class CacheHealthResponse(BaseModel):
    connected: bool
    onlineUsers: int
    timestamp: str


class QueueStatsResponse(BaseModel):
    name: str
    waiting: int | None = None
    active: int | None = None
    completed: int | None = None
    failed: int | None = None
    delayed: int | None = None
    error: str | None = None


class QueuesHealthResponse(BaseModel):
    healthy: bool
    queues: list[QueueStatsResponse]
    timestamp: str
    error: str | None = None


# ============================================================================
# ENDPOINTS
# ============================================================================


@router.get("", response_model=HealthResponse)
async def health_check(
    settings: SettingsDep,
    connection: ConnectionDep,
    cache: CacheServiceDep,
    job_queue: JobQueueDep,
):
    """Overall health. Degraded when Redis is absent or any queue reports an error."""
    redis_health = await connection.health_check()
    queues = await job_queue.get_queues_health()

    healthy = redis_health["status"] == "healthy" and queues["healthy"]
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app.APP_VERSION,
        components={
            "redis": redis_health,
            "cache": {"enabled": cache.enabled, **cache.stats()},
            "queues": {"healthy": queues["healthy"]},
        },
    )


@router.get("/cache", response_model=CacheHealthResponse)
async def cache_health(cache: CacheServiceDep):
    return await cache.get_health_status()


@router.get("/queues", response_model=QueuesHealthResponse)
async def queues_health(job_queue: JobQueueDep):
    return await job_queue.get_queues_health()


@router.get("/queues/{name}", response_model=QueueStatsResponse)
async def queue_stats(name: str, job_queue: JobQueueDep):
    try:
        return await job_queue.get_queue_stats(name)
    except UnknownQueueError as e:
        raise HTTPException(status_code=404, detail=e.message) from e
