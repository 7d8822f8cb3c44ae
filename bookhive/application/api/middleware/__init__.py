from .cache_interceptor import CacheInterceptor, PostWriteHooks, default_post_write_hooks
from .error_handler import ErrorHandlingMiddleware, add_error_handling_middleware
from .request_id import RequestIdMiddleware

__all__ = [
    "CacheInterceptor",
    "ErrorHandlingMiddleware",
    "PostWriteHooks",
    "RequestIdMiddleware",
    "add_error_handling_middleware",
    "default_post_write_hooks",
]
