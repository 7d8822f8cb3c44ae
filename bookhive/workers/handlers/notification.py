"""
Notification Job Handler

Realtime (socket) and push delivery for the ``notification`` queue.
"""

from datetime import datetime, timezone
from typing import Any

from bookhive.core.exceptions import JobHandlerError
from bookhive.core.interfaces import PushGateway, SocketEmitter
from bookhive.core.logging.logger import get_logger
from bookhive.infrastructure.message_queue.models import now_ms

logger = get_logger(__name__)


class NotificationJobHandler:
    """Handlers for the ``notification`` queue."""

    def __init__(self, emitter: SocketEmitter, push_gateway: PushGateway):
        self._emitter = emitter
        self._push = push_gateway

    async def send_socket_notification(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Emit a ``notification`` event to every socket of ``user_id``.

        Raises:
            JobHandlerError: If the realtime channel is unavailable
        """
        user_id = data.get("user_id")
        notification = data.get("notification") or {}
        if not user_id:
            raise JobHandlerError("Socket notification requires 'user_id'")

        event = {
            "id": notification.get("id") or now_ms(),
            "type": notification.get("type") or "info",
            "title": notification.get("title"),
            "message": notification.get("message"),
            "data": notification.get("data") or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            receivers = await self._emitter.emit_to_user(str(user_id), "notification", event)
        except JobHandlerError:
            raise
        except Exception as e:
            raise JobHandlerError(f"Failed to send socket notification: {e}", details={"user_id": user_id}) from e

        return {
            "success": True,
            "user_id": user_id,
            "notification_type": event["type"],
            "receivers": receivers,
        }

    async def send_push_notification(self, data: dict[str, Any]) -> dict[str, Any]:
        user_id = data.get("user_id")
        title = data.get("title")
        body = data.get("body")
        try:
            delivery = await self._push.push(str(user_id), title, body, data.get("data") or {})
        except Exception as e:
            raise JobHandlerError(f"Failed to send push notification: {e}", details={"user_id": user_id}) from e

        return {"success": True, "user_id": user_id, "title": title, "body": body, **delivery}
