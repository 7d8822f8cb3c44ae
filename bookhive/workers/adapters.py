"""
Delivery Adapters

Default implementations of the delivery protocols used by job handlers.

- SmtpMailTransport: smtplib, run in a worker thread
- RedisSocketEmitter: Redis pub/sub fan-out to the socket gateway
- LoggingPushGateway: logs push notifications (no push provider configured)
- LocalMediaUploader: copies processed images under MEDIA_ROOT
"""

import asyncio
import shutil
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from pathlib import Path
from typing import Any

from bookhive.core.config.constants import KEY_SOCKET_CHANNEL
from bookhive.core.config.settings import Settings, get_settings
from bookhive.core.exceptions import JobHandlerError
from bookhive.core.logging.logger import get_logger
from bookhive.infrastructure.cache.redis_client import ConnectionManager

logger = get_logger(__name__)


class SmtpMailTransport:
    """
    SMTP delivery with optional STARTTLS and login.

    smtplib is blocking; each send runs in a worker thread so the event
    loop keeps serving other jobs.
    """

    def __init__(self, settings: Settings | None = None, timeout: float = 30.0):
        self._settings = settings or get_settings()
        self._timeout = timeout

    def _deliver(self, message: EmailMessage) -> None:
        cfg = self._settings.email
        with smtplib.SMTP(cfg.EMAIL_HOST, cfg.EMAIL_PORT, timeout=self._timeout) as server:
            if cfg.EMAIL_USE_TLS:
                server.starttls()
            if cfg.EMAIL_USER and cfg.EMAIL_PASS:
                server.login(cfg.EMAIL_USER, cfg.EMAIL_PASS)
            server.send_message(message)

    async def send(self, message: EmailMessage) -> str:
        if "Message-ID" not in message:
            message["Message-ID"] = make_msgid(domain="bookhive.app")
        await asyncio.to_thread(self._deliver, message)
        logger.info("Email sent", to=message["To"], subject=message["Subject"])
        return message["Message-ID"]


class RedisSocketEmitter:
    """
    Publishes realtime events on ``socket:user:<id>``.

    The socket gateway subscribes to these channels and forwards each
    message to the user's open connections.
    """

    def __init__(self, connection: ConnectionManager):
        self._connection = connection

    async def emit_to_user(self, user_id: str, event: str, data: dict[str, Any]) -> int:
        if not self._connection.is_connected:
            raise JobHandlerError("Realtime channel unavailable", details={"user_id": user_id})
        channel = f"{KEY_SOCKET_CHANNEL}:{user_id}"
        return await self._connection.publish(channel, {"event": event, "data": data})


class LoggingPushGateway:
    """Push gateway used until a push provider is configured."""

    async def push(self, user_id: str, title: str, body: str, data: dict[str, Any]) -> dict[str, Any]:
        logger.info("Push notification would be sent", user_id=user_id, title=title, body=body, data=data)
        return {"delivered": False, "note": "Push notifications not yet implemented"}


class LocalMediaUploader:
    """Publishes files under MEDIA_ROOT and serves them from MEDIA_BASE_URL."""

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()

    async def upload(self, path: str, folder: str, public_id: str | None = None) -> dict[str, Any]:
        source = Path(path)
        name = f"{public_id or source.stem}{source.suffix}"
        target = Path(self._settings.media.MEDIA_ROOT) / folder / name

        def copy() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)

        await asyncio.to_thread(copy)
        base_url = self._settings.media.MEDIA_BASE_URL.rstrip("/")
        return {
            "secure_url": f"{base_url}/{folder}/{name}",
            "public_id": f"{folder}/{public_id or source.stem}",
            "bytes": target.stat().st_size,
        }
