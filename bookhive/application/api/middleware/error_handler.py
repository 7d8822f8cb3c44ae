"""
Error Handling Middleware
=========================

Last line of defence for exceptions that no route or exception handler
caught. Domain errors (BookHiveError, RateLimitExceededError) are mapped by
the exception handlers registered in ``bookhive.application.app``; anything
else ends up here and becomes a generic JSON 500.

Clients never see internals: the full error goes to the log, the response
carries the error type and the request id for correlation. Tracebacks are
only included when ``include_traceback`` is set (development).
"""

import traceback
from collections.abc import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from bookhive.core.logging.logger import get_logger, get_request_id

logger = get_logger(__name__)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn unhandled exceptions into a JSON 500 without leaking internals."""

    def __init__(self, app, include_traceback: bool = False):
        """
        Args:
            app: The ASGI application
            include_traceback: Include stack traces in error responses
                              (never in production)
        """
        super().__init__(app)
        self.include_traceback = include_traceback

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except Exception as e:
            method = request.method
            path = request.url.path
            error_type = type(e).__name__

            logger.error(
                "Unhandled exception",
                stage="HTTP.E",
                method=method,
                path=path,
                error_type=error_type,
                error_message=str(e),
                exc_info=True,
            )

            error_response = {
                "error": "internal_server_error",
                "message": "BookHive hit an unexpected error. Please retry shortly.",
                "error_type": error_type,
                "request_id": get_request_id(),
            }

            if self.include_traceback:
                error_response["traceback"] = traceback.format_exc()
                error_response["detail"] = str(e)

            return JSONResponse(status_code=500, content=error_response)


def add_error_handling_middleware(app, include_traceback: bool = False):
    """
    Register the middleware on ``app``. Call it before adding the CORS and
    request id middleware so those wrap it.
    """
    app.add_middleware(ErrorHandlingMiddleware, include_traceback=include_traceback)
