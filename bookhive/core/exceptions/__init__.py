"""
Exception Module

Structured exception hierarchy for the BookHive caching and job core.

Module Structure:
-----------------
- **base.py**: BookHiveError base class + ConfigurationError
- **cache.py**: Redis connection and cache service exceptions
- **queue.py**: Job queue exceptions
- **job.py**: Job handler and registry exceptions
- **rate_limit.py**: Rate limiting exceptions

Usage:
------
```python
from bookhive.core.exceptions import QueueError, JobHandlerError
```
"""

from bookhive.core.exceptions.base import BookHiveError, ConfigurationError
from bookhive.core.exceptions.cache import (
    CacheConnectionError,
    CacheError,
    CacheSerializationError,
)
from bookhive.core.exceptions.job import JobError, JobHandlerError, JobResultError, UnknownJobTypeError
from bookhive.core.exceptions.queue import JobNotFoundError, QueueError, UnknownQueueError
from bookhive.core.exceptions.rate_limit import RateLimitError, RateLimitExceededError

__all__ = [
    "BookHiveError",
    "CacheConnectionError",
    "CacheError",
    "CacheSerializationError",
    "ConfigurationError",
    "JobError",
    "JobHandlerError",
    "JobNotFoundError",
    "JobResultError",
    "QueueError",
    "RateLimitError",
    "RateLimitExceededError",
    "UnknownJobTypeError",
    "UnknownQueueError",
]
