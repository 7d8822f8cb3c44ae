#!/usr/bin/env python3
"""
BookHive structured logging (structlog)

Every component logs through ``get_logger(__name__)`` with keyword context
(``stage="REDIS.2"``, ``queue="email"``, ``job_id=...``). The processor
chain adds the HTTP request id and a UTC timestamp, then scrubs reader
contact details before rendering as JSON or console output.
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from bookhive.core.config.settings import get_settings

# Context variable for request ID (task-local under asyncio)
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

_EMAIL_RE = re.compile(r"\b[\w.+-]+@[\w.-]+\.\w+\b")
_TOKEN_RE = re.compile(r"\b(?:Bearer\s+)?eyJ[\w-]+\.[\w-]+\.[\w-]+\b")
_PHONE_RE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")


def add_request_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add request ID to log event from context variable.

    STAGE-L.1: Request ID injection
    """
    request_id = request_id_ctx.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    UTC ISO-8601 timestamp with a trailing Z.

    STAGE-L.2
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def redact_pii(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Scrub reader contact details and auth tokens.

    STAGE-L.3: PII redaction

    Patterns redacted:
    - email addresses: [EMAIL]
    - JWTs and bearer tokens: [REDACTED]
    - phone numbers: [PHONE]

    Only ``event`` and ``to`` are rewritten, and only when they are strings.
    """
    for field in ("event", "to"):
        value = event_dict.get(field)
        if isinstance(value, str):
            value = _EMAIL_RE.sub("[EMAIL]", value)
            value = _TOKEN_RE.sub("[REDACTED]", value)
            value = _PHONE_RE.sub("[PHONE]", value)
            event_dict[field] = value

    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Uppercase the log level name.

    STAGE-L.4
    """
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog for the API process or a worker process.

    STAGE-L

    Args:
        log_level: Level name; defaults to LOG_LEVEL
        log_format: "json" or "console"; defaults to LOG_FORMAT
    """
    settings = get_settings()

    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_request_id,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_pii,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Module logger.

    Args:
        name: Usually __name__

    Returns:
        structlog BoundLogger

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage="REDIS.2")
    """
    return structlog.get_logger(name)


def set_request_id(request_id: str) -> None:
    """
    Set request ID in context for the current request or job.

    STAGE-1.1: Request ID context initialization
    """
    request_id_ctx.set(request_id)


def get_request_id() -> str | None:
    """Get current request ID from context."""
    return request_id_ctx.get()


def clear_request_id() -> None:
    """
    Clear request ID from context.

    STAGE-6: Request ID context cleanup
    """
    request_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Emit ``message`` tagged with ``stage`` at ``level``.

    Args:
        logger: Logger instance
        stage: Stage identifier (e.g., "CACHE.1", "JOB.3")
        message: Log message
        level: Method name on the logger ("info", "warning", ...)
        **kwargs: Extra event fields

    Usage:
        log_stage(logger, "CACHE.1", "Cache hit", key="books:popular:all")
    """
    log_func = getattr(logger, level.lower())
    log_func(message, stage=stage, **kwargs)
