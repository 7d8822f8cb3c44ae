"""
BookHiveError and ConfigurationError

Cache, queue, job and rate-limit errors live in their own modules and all
derive from BookHiveError, so the app maps any of them with one handler.
"""

from typing import Any


class BookHiveError(Exception):
    """
    Root of the BookHive core error hierarchy.

    Carries the request id (when raised inside a request) and a details
    dict that ends up both in the log line and in the JSON error body.

    Attributes:
        message: Error message
        request_id: Request ID for correlation (if available)
        details: Additional error details (dict)

    Example:
        raise QueueError(
            "Failed to enqueue job",
            details={"queue": "email", "job_type": "send-welcome-email"}
        )
    """

    def __init__(
        self, message: str, request_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.request_id = request_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """JSON body used by the BookHiveError exception handler."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "request_id": self.request_id,
            "details": self.details,
        }

    def with_suggestion(self, suggestion: str) -> "BookHiveError":
        """Attach an operator hint, e.g. "Check REDIS_URL"."""
        self.details["suggestion"] = suggestion
        return self

    def with_context(self, **context) -> "BookHiveError":
        """Merge ``context`` into details and return self."""
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        request_id_str = f", request_id='{self.request_id}'" if self.request_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{request_id_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        request_id: str | None = None,
        **details
    ) -> "BookHiveError":
        """
        Create an error from another exception.

        Args:
            exc: The redis, OSError or handler exception being wrapped
            message: Defaults to str(exc)
            request_id: Request ID for correlation
            **details: Merged after original_error and original_message

        Returns:
            New instance with wrapped exception details

        Example:
            >>> try:
            ...     await client.lmove(waiting, active, "LEFT", "RIGHT")
            ... except RedisError as e:
            ...     raise QueueError.from_exception(e, queue="email")
        """
        error_message = message or str(exc)
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, request_id=request_id, details=error_details)


class ConfigurationError(BookHiveError):
    """Invalid settings or an inconsistent queue/handler table."""
