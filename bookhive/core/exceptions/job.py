"""
Job Execution Exceptions

Raised by job handlers and the handler registry.
"""

from bookhive.core.exceptions.base import BookHiveError, ConfigurationError


class JobError(BookHiveError):
    """Base exception for job execution errors."""
    pass


class JobHandlerError(JobError):
    """
    Raised by a handler when its work fails.

    The worker pool counts this against the job's attempt budget and
    retries with backoff until the budget is exhausted.
    """
    pass


class UnknownJobTypeError(JobError, ConfigurationError):
    """
    Raised at registration when a (queue, job type) pair is not defined.

    Also a ConfigurationError: a bad handler table is a startup failure.
    """
    pass


class JobResultError(JobError):
    """
    Raised when a handler's return value cannot be stored with the job.

    The worker pool records it as a failed attempt.
    """
    pass
