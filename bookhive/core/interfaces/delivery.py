"""
Delivery Protocols

Outbound side effects performed by job handlers. Production adapters live
in bookhive.workers.adapters; tests substitute recording fakes.
"""

from email.message import EmailMessage
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MailTransport(Protocol):
    """Sends a fully built email message."""

    async def send(self, message: EmailMessage) -> str:
        """
        Deliver the message.

        Returns:
            The Message-ID of the sent message
        """
        ...


@runtime_checkable
class SocketEmitter(Protocol):
    """Pushes a realtime event to every socket a user has open."""

    async def emit_to_user(self, user_id: str, event: str, data: dict[str, Any]) -> int:
        """
        Returns:
            Number of subscribers that received the event
        """
        ...


@runtime_checkable
class PushGateway(Protocol):
    """Mobile/web push delivery."""

    async def push(self, user_id: str, title: str, body: str, data: dict[str, Any]) -> dict[str, Any]:
        ...


@runtime_checkable
class ImageUploader(Protocol):
    """Publishes a processed image and returns where it lives."""

    async def upload(self, path: str, folder: str, public_id: str | None = None) -> dict[str, Any]:
        """
        Returns:
            Dict with at least ``secure_url`` and ``public_id``
        """
        ...
