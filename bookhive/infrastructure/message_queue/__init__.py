"""
Message Queue Module

Redis-backed job queues with retry, backoff, delay, cron and retention.
"""

from .job_queue import JobQueue, QueueKeys, next_cron_run_ms
from .models import QUEUE_DEFINITIONS, BackoffPolicy, Job, JobOptions, QueueDefinition

__all__ = [
    "QUEUE_DEFINITIONS",
    "BackoffPolicy",
    "Job",
    "JobOptions",
    "JobQueue",
    "QueueDefinition",
    "QueueKeys",
    "next_cron_run_ms",
]
