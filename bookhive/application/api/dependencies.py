"""
FastAPI Dependencies
====================

Accessors for the singletons the lifespan stores on ``app.state``. Routes
declare them with the ``*Dep`` aliases:

    @router.get("/books/popular")
    async def popular(cache: CacheServiceDep):
        return await cache.get_popular_books()

Tests can swap any of them with ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Request

from bookhive.application.api.middleware.cache_interceptor import CacheInterceptor, PostWriteHooks
from bookhive.core.config.settings import Settings
from bookhive.infrastructure.cache.cache_service import CacheService
from bookhive.infrastructure.cache.redis_client import ConnectionManager
from bookhive.infrastructure.message_queue import JobQueue
from bookhive.rate_limiting import RateLimiter


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_connection(request: Request) -> ConnectionManager:
    return request.app.state.connection


def get_cache_service(request: Request) -> CacheService:
    return request.app.state.cache


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_interceptor(request: Request) -> CacheInterceptor:
    return request.app.state.interceptor


def get_post_write_hooks(request: Request) -> PostWriteHooks:
    return request.app.state.post_write_hooks


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
ConnectionDep = Annotated[ConnectionManager, Depends(get_connection)]
CacheServiceDep = Annotated[CacheService, Depends(get_cache_service)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
JobQueueDep = Annotated[JobQueue, Depends(get_job_queue)]
PostWriteHooksDep = Annotated[PostWriteHooks, Depends(get_post_write_hooks)]
