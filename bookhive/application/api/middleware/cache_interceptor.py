"""
Cache-Aware Request Interceptor
===============================

Look-aside caching for read endpoints, plus the hooks that keep it honest
after writes.

CacheInterceptor.cached()
-------------------------
Decorator for async FastAPI handlers:

    interceptor = CacheInterceptor(cache)

    @router.get("/books/popular")
    @interceptor.cached(ttl=CacheTTL.POPULAR, namespace="books")
    async def popular_books(request: Request, category: str = "all"):
        return await store.popular(category)

- Only GET is cached; other methods go straight to the handler.
- Key: ``http:<namespace>:<md5(path + sorted query)>`` or ``key_builder(request)``.
- The handler's return value decides what is cached: dicts, lists and
  pydantic models (JSON mode). Response objects and None pass through and
  are never stored.
- The wrapped signature is preserved so FastAPI dependency injection keeps
  working. If the handler does not take a Request, one is injected into the
  signature and removed before the handler is called.

PostWriteHooks
--------------
Called explicitly by the write path after the primary write succeeded:

    await hooks.run("book", book_id=book.id)

A failing hook is logged and swallowed; the write has already happened.
"""

import functools
import hashlib
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request
from pydantic import BaseModel

from bookhive.core.config.constants import KEY_HTTP_RESPONSE, CacheTTL
from bookhive.core.logging.logger import get_logger
from bookhive.infrastructure.cache.cache_service import CacheService

logger = get_logger(__name__)

HTTP_BOOKS_NAMESPACE = "books"
_INJECTED_REQUEST = "_cache_request"

KeyBuilder = Callable[[Request], str]
PostWriteHook = Callable[..., Awaitable[Any]]


def build_request_key(request: Request, namespace: str) -> str:
    """``http:<namespace>:<md5(path + sorted query)>``"""
    query = "&".join(f"{k}={v}" for k, v in sorted(request.query_params.multi_items()))
    digest = hashlib.md5(f"{request.url.path}?{query}".encode()).hexdigest()
    return f"{KEY_HTTP_RESPONSE}:{namespace}:{digest}"


def _cacheable(value: Any) -> Any:
    """JSON-ready form of a handler result, or None when it must not be cached."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict | list):
        return value
    return None


class CacheInterceptor:
    """Decorator factory caching GET handler results in the shared cache."""

    def __init__(self, cache: CacheService):
        self._cache = cache

    def cached(
        self,
        ttl: CacheTTL = CacheTTL.DEFAULT,
        namespace: str = "http",
        key_builder: KeyBuilder | None = None,
    ):
        def decorator(func):
            signature = inspect.signature(func)
            request_param = next(
                (p.name for p in signature.parameters.values() if p.annotation is Request),
                None,
            )

            @functools.wraps(func)
            async def wrapper(*args, **kwargs):
                if request_param is None:
                    request = kwargs.pop(_INJECTED_REQUEST)
                else:
                    request = kwargs.get(request_param)

                if request is None or request.method != "GET":
                    return await func(*args, **kwargs)

                key = key_builder(request) if key_builder else build_request_key(request, namespace)

                cached_value = await self._cache.get(key)
                if cached_value is not None:
                    logger.info("HTTP cache hit", stage="CACHE.HTTP", path=request.url.path, key=key)
                    return cached_value

                logger.info("HTTP cache miss", stage="CACHE.HTTP", path=request.url.path, key=key)
                result = await func(*args, **kwargs)

                payload = _cacheable(result)
                if payload is not None:
                    await self._cache.set(key, payload, ttl)
                return result

            if request_param is None:
                params = list(signature.parameters.values())
                injected = inspect.Parameter(
                    _INJECTED_REQUEST, inspect.Parameter.KEYWORD_ONLY, annotation=Request
                )
                insert_at = len(params)
                if params and params[-1].kind is inspect.Parameter.VAR_KEYWORD:
                    insert_at -= 1
                params.insert(insert_at, injected)
                wrapper.__signature__ = signature.replace(parameters=params)

            return wrapper

        return decorator


class PostWriteHooks:
    """Entity name -> hooks run after a successful write."""

    def __init__(self):
        self._hooks: dict[str, list[PostWriteHook]] = {}

    def register(self, entity: str, hook: PostWriteHook) -> None:
        self._hooks.setdefault(entity, []).append(hook)

    def entities(self) -> list[str]:
        return sorted(self._hooks)

    async def run(self, entity: str, **context: Any) -> int:
        """
        Run every hook registered for ``entity``.

        Returns:
            Number of hooks that succeeded
        """
        succeeded = 0
        for hook in self._hooks.get(entity, []):
            try:
                await hook(**context)
                succeeded += 1
            except Exception as e:
                logger.warning(
                    "Post-write hook failed",
                    stage="CACHE.INVALIDATE",
                    entity=entity,
                    hook=getattr(hook, "__name__", repr(hook)),
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return succeeded


def default_post_write_hooks(cache: CacheService) -> PostWriteHooks:
    """Book writes clear listings and cached book responses; user writes clear that user's entries."""
    hooks = PostWriteHooks()

    async def invalidate_books(**_: Any) -> None:
        await cache.invalidate_book_caches()
        await cache.flush_pattern(f"{KEY_HTTP_RESPONSE}:{HTTP_BOOKS_NAMESPACE}:*")

    async def invalidate_user(*, user_id: str, **_: Any) -> None:
        await cache.invalidate_user_caches(user_id)

    hooks.register("book", invalidate_books)
    hooks.register("user", invalidate_user)
    return hooks
