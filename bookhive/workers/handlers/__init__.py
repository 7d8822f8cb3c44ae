"""
Job Handlers

One class per queue. Each public coroutine takes the job payload and
returns a result dict, raising JobHandlerError on failure.
"""

from .cleanup import CleanupJobHandler
from .email import EmailJobHandler
from .image import ImageJobHandler
from .notification import NotificationJobHandler

__all__ = [
    "CleanupJobHandler",
    "EmailJobHandler",
    "ImageJobHandler",
    "NotificationJobHandler",
]
