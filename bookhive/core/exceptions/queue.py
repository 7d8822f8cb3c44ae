"""
Job Queue Exceptions

All exceptions related to the Redis-backed job queues.
"""

from bookhive.core.exceptions.base import BookHiveError


class QueueError(BookHiveError):
    """Base exception for job queue errors."""
    pass


class UnknownQueueError(QueueError):
    """Raised when a caller names a queue that is not defined."""
    pass


class JobNotFoundError(QueueError):
    """Raised when a job id has no stored record (pruned or never existed)."""
    pass
