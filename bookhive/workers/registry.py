"""
Handler Registry

Maps (queue, job type) to the coroutine that processes it. Registration is
validated against the queue/job-type table, so a typo in the handler
table fails at startup instead of at the first job.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from bookhive.core.config.constants import QUEUE_JOB_TYPES, JobType, QueueName
from bookhive.core.config.settings import Settings, get_settings
from bookhive.core.exceptions import UnknownJobTypeError
from bookhive.core.interfaces import (
    BorrowRequestStore,
    ImageUploader,
    MailTransport,
    NotificationStore,
    PushGateway,
    SocketEmitter,
    UserStore,
)
from bookhive.core.logging.logger import get_logger
from bookhive.workers.handlers import (
    CleanupJobHandler,
    EmailJobHandler,
    ImageJobHandler,
    NotificationJobHandler,
)

logger = get_logger(__name__)

JobHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class HandlerRegistry:
    """
    Validated (queue, job type) -> handler table.

    Usage:
        registry = HandlerRegistry()
        registry.register("email", "send-email", email.send_email)
        handler = registry.get("email", "send-email")
    """

    def __init__(self, job_types: dict[str, frozenset[str]] | None = None):
        self._job_types = job_types if job_types is not None else QUEUE_JOB_TYPES
        self._handlers: dict[str, dict[str, JobHandler]] = {}

    def register(self, queue_name: str | QueueName, job_type: str | JobType, handler: JobHandler) -> None:
        """
        Raises:
            UnknownJobTypeError: If the queue is undefined or does not own the job type
        """
        queue_name = queue_name.value if isinstance(queue_name, QueueName) else queue_name
        job_type = job_type.value if isinstance(job_type, JobType) else job_type

        allowed = self._job_types.get(queue_name)
        if allowed is None:
            raise UnknownJobTypeError(
                f"Cannot register handler for unknown queue '{queue_name}'",
                details={"queue": queue_name, "job_type": job_type},
            )
        if job_type not in allowed:
            raise UnknownJobTypeError(
                f"Job type '{job_type}' is not defined for queue '{queue_name}'",
                details={"queue": queue_name, "job_type": job_type, "allowed": sorted(allowed)},
            )
        if not callable(handler):
            raise TypeError(f"Handler for {queue_name}/{job_type} is not callable")

        self._handlers.setdefault(queue_name, {})[job_type] = handler

    def get(self, queue_name: str, job_type: str) -> JobHandler:
        """
        Raises:
            UnknownJobTypeError: If no handler is registered
        """
        try:
            return self._handlers[queue_name][job_type]
        except KeyError:
            raise UnknownJobTypeError(
                f"No handler registered for {queue_name}/{job_type}",
                details={"queue": queue_name, "job_type": job_type},
            ) from None

    def has(self, queue_name: str, job_type: str) -> bool:
        return job_type in self._handlers.get(queue_name, {})

    def queues(self) -> list[str]:
        """Queues with at least one handler."""
        return [name for name, handlers in self._handlers.items() if handlers]

    def job_types(self, queue_name: str) -> list[str]:
        return sorted(self._handlers.get(queue_name, {}))


@dataclass
class JobDependencies:
    """Collaborators the default handlers need."""

    mail_transport: MailTransport
    socket_emitter: SocketEmitter
    push_gateway: PushGateway
    image_uploader: ImageUploader
    user_store: UserStore | None = None
    notification_store: NotificationStore | None = None
    borrow_request_store: BorrowRequestStore | None = None
    settings: Settings = field(default_factory=get_settings)

    @property
    def has_cleanup_stores(self) -> bool:
        return None not in (self.user_store, self.notification_store, self.borrow_request_store)

    @classmethod
    def defaults(cls, connection, settings: Settings | None = None, **stores) -> "JobDependencies":
        """Production adapters: SMTP, Redis pub/sub sockets, logged push, local media."""
        from bookhive.workers.adapters import (
            LocalMediaUploader,
            LoggingPushGateway,
            RedisSocketEmitter,
            SmtpMailTransport,
        )

        settings = settings or get_settings()
        return cls(
            mail_transport=SmtpMailTransport(settings),
            socket_emitter=RedisSocketEmitter(connection),
            push_gateway=LoggingPushGateway(),
            image_uploader=LocalMediaUploader(settings),
            settings=settings,
            **stores,
        )


def build_handler_registry(deps: JobDependencies) -> HandlerRegistry:
    """Wire the default handler table."""
    registry = HandlerRegistry()

    email = EmailJobHandler(deps.mail_transport, deps.settings)
    registry.register(QueueName.EMAIL, JobType.SEND_EMAIL, email.send_email)
    registry.register(QueueName.EMAIL, JobType.SEND_WELCOME_EMAIL, email.send_welcome_email)
    registry.register(QueueName.EMAIL, JobType.SEND_BORROW_REQUEST_EMAIL, email.send_borrow_request_email)
    registry.register(QueueName.EMAIL, JobType.SEND_REMINDER_EMAIL, email.send_reminder_email)
    registry.register(QueueName.EMAIL, JobType.SEND_OVERDUE_EMAIL, email.send_overdue_email)

    notification = NotificationJobHandler(deps.socket_emitter, deps.push_gateway)
    registry.register(QueueName.NOTIFICATION, JobType.SEND_SOCKET_NOTIFICATION, notification.send_socket_notification)
    registry.register(QueueName.NOTIFICATION, JobType.SEND_PUSH_NOTIFICATION, notification.send_push_notification)

    image = ImageJobHandler(deps.image_uploader)
    registry.register(QueueName.IMAGE_PROCESSING, JobType.OPTIMIZE_IMAGE, image.optimize_image)
    registry.register(QueueName.IMAGE_PROCESSING, JobType.GENERATE_THUMBNAILS, image.generate_thumbnails)
    registry.register(QueueName.IMAGE_PROCESSING, JobType.UPLOAD_OPTIMIZED_IMAGE, image.upload_optimized_image)
    registry.register(QueueName.IMAGE_PROCESSING, JobType.BATCH_PROCESS_IMAGES, image.batch_process_images)

    cleanup = CleanupJobHandler(
        deps.user_store, deps.notification_store, deps.borrow_request_store, deps.settings
    )
    registry.register(QueueName.CLEANUP, JobType.CLEANUP_TEMP_FILES, cleanup.cleanup_temp_files)
    if deps.has_cleanup_stores:
        registry.register(QueueName.CLEANUP, JobType.CLEANUP_EXPIRED_TOKENS, cleanup.cleanup_expired_tokens)
        registry.register(QueueName.CLEANUP, JobType.CLEANUP_OLD_NOTIFICATIONS, cleanup.cleanup_old_notifications)
        registry.register(QueueName.CLEANUP, JobType.CLEANUP_INACTIVE_SESSIONS, cleanup.cleanup_inactive_sessions)
        registry.register(QueueName.CLEANUP, JobType.CLEANUP_OLD_BORROW_REQUESTS, cleanup.cleanup_old_borrow_requests)
        registry.register(QueueName.CLEANUP, JobType.COMPREHENSIVE_CLEANUP, cleanup.comprehensive_cleanup)
    else:
        logger.warning(
            "Cleanup stores not supplied, only cleanup-temp-files is registered",
            stage="WORKER.0",
        )

    return registry
