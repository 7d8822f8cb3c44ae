"""
Collaborator Protocols

- **stores.py**: source-of-truth queries used by cleanup jobs and cache warming
- **delivery.py**: outbound channels used by email, notification and image jobs
"""

from bookhive.core.interfaces.delivery import ImageUploader, MailTransport, PushGateway, SocketEmitter
from bookhive.core.interfaces.stores import (
    BorrowRequestStore,
    NotificationStore,
    UserStore,
    WarmupSource,
)

__all__ = [
    "BorrowRequestStore",
    "ImageUploader",
    "MailTransport",
    "NotificationStore",
    "PushGateway",
    "SocketEmitter",
    "UserStore",
    "WarmupSource",
]
