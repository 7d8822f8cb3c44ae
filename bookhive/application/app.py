#!/usr/bin/env python3
"""
FastAPI Application Entry Point

Wires the shared Redis connection into the cache, rate limiter and job
queue, and (optionally) runs the worker pool inside the API process.

Startup never fails because Redis is missing: every component degrades to
"no cache, no limits, no background jobs" and the API keeps serving.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bookhive.application.api.middleware.cache_interceptor import (
    CacheInterceptor,
    default_post_write_hooks,
)
from bookhive.application.api.middleware.error_handler import add_error_handling_middleware
from bookhive.application.api.middleware.request_id import RequestIdMiddleware
from bookhive.application.api.routes.health import router as health_router
from bookhive.core.config.constants import (
    HEADER_RATE_LIMIT,
    HEADER_RATE_REMAINING,
    HEADER_RATE_RESET,
    HEADER_REQUEST_ID,
    HEADER_RETRY_AFTER,
)
from bookhive.core.config.settings import Settings, get_settings
from bookhive.core.exceptions import BookHiveError, RateLimitExceededError
from bookhive.core.interfaces import WarmupSource
from bookhive.core.logging.logger import get_logger, get_request_id, setup_logging
from bookhive.infrastructure.cache.cache_service import CacheService
from bookhive.infrastructure.cache.redis_client import ClientFactory, ConnectionManager
from bookhive.infrastructure.message_queue import JobQueue
from bookhive.rate_limiting import RateLimiter
from bookhive.workers.pool import WorkerConfig, WorkerPool
from bookhive.workers.registry import JobDependencies, build_handler_registry

logger = get_logger(__name__)


# ============================================================================
# Application Lifespan
# ============================================================================


def _build_lifespan(
    settings: Settings,
    job_dependencies: JobDependencies | None,
    warmup_source: WarmupSource | None,
    client_factory: ClientFactory | None,
):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

        logger.info(
            "Starting BookHive core",
            stage="APP.0",
            environment=settings.app.ENVIRONMENT,
            version=settings.app.APP_VERSION,
        )

        connection = ConnectionManager(settings, client_factory=client_factory)
        await connection.connect()

        cache = CacheService(connection, settings)
        job_queue = JobQueue(connection, lock_duration_ms=settings.worker.WORKER_LOCK_DURATION_MS)

        app.state.settings = settings
        app.state.connection = connection
        app.state.cache = cache
        app.state.rate_limiter = RateLimiter(connection, settings=settings)
        app.state.job_queue = job_queue
        app.state.interceptor = CacheInterceptor(cache)
        app.state.post_write_hooks = default_post_write_hooks(cache)
        app.state.worker_pool = None

        try:
            if warmup_source is not None and settings.cache.CACHE_WARM_ON_STARTUP:
                await cache.warm_cache(warmup_source)

            if settings.worker.WORKER_ENABLED and connection.is_connected:
                deps = job_dependencies or JobDependencies.defaults(connection, settings)
                pool = WorkerPool(job_queue, build_handler_registry(deps), WorkerConfig.from_settings(settings))
                await pool.start()
                app.state.worker_pool = pool
            elif settings.worker.WORKER_ENABLED:
                logger.warning("Redis unavailable, job workers not started", stage="APP.0")

            logger.info("Application startup complete", stage="APP.0", redis=connection.is_connected)

            yield

        finally:
            logger.info("Shutting down application", stage="APP.1")

            if app.state.worker_pool is not None:
                await app.state.worker_pool.stop()
            await job_queue.close()
            await connection.disconnect()

            logger.info("Application shutdown complete", stage="APP.1")

    return lifespan


# ============================================================================
# Exception Handlers
# ============================================================================


async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
    """429 with Retry-After and the X-RateLimit-* headers."""
    result = exc.result
    retry_after = result.retry_after if result is not None and result.retry_after else 60

    headers = result.headers() if result is not None else {}
    headers[HEADER_RETRY_AFTER] = str(retry_after)

    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "message": exc.message, "retryAfter": retry_after},
        headers=headers,
    )


async def bookhive_exception_handler(request: Request, exc: BookHiveError):
    logger.error(
        f"BookHive exception: {exc.message}",
        error_type=type(exc).__name__,
        request_id=exc.request_id,
    )
    request_id = exc.request_id or get_request_id() or ""
    return JSONResponse(status_code=500, content=exc.to_dict(), headers={HEADER_REQUEST_ID: request_id})


# ============================================================================
# Application Factory
# ============================================================================


def create_app(
    settings: Settings | None = None,
    job_dependencies: JobDependencies | None = None,
    warmup_source: WarmupSource | None = None,
    client_factory: ClientFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to the global settings)
        job_dependencies: Collaborators for the in-process workers
        warmup_source: Data source for startup cache warming
        client_factory: Redis client factory (tests inject an in-memory broker)
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Caching, rate limiting and background jobs for BookHive",
        lifespan=_build_lifespan(settings, job_dependencies, warmup_source, client_factory),
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    # Middleware runs in reverse registration order. The request id is bound
    # outermost so error responses and their logs carry it.
    add_error_handling_middleware(app, include_traceback=(settings.app.ENVIRONMENT == "development"))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            HEADER_REQUEST_ID,
            HEADER_RATE_LIMIT,
            HEADER_RATE_REMAINING,
            HEADER_RATE_RESET,
            HEADER_RETRY_AFTER,
        ],
    )
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(RateLimitExceededError, rate_limit_handler)
    app.add_exception_handler(BookHiveError, bookhive_exception_handler)

    app.include_router(health_router, prefix=settings.app.API_BASE_PATH)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "docs": "/docs",
            "health": f"{settings.app.API_BASE_PATH}/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "bookhive.application.app:app",
        host=settings.app.API_HOST,
        port=settings.app.API_PORT,
        reload=settings.app.ENVIRONMENT == "development",
        log_level=settings.logging.LOG_LEVEL.lower(),
    )
