"""
Background Workers

- **registry.py**: validated (queue, job type) -> handler table
- **pool.py**: per-queue consumers with bounded concurrency
- **handlers/**: email, notification, image and cleanup job handlers
- **adapters.py**: default delivery adapters (SMTP, pub/sub, push log, local media)

Run standalone with ``python -m bookhive.workers``.
"""

from .pool import QueueConsumer, WorkerConfig, WorkerPool
from .registry import HandlerRegistry, JobDependencies, build_handler_registry

__all__ = [
    "HandlerRegistry",
    "JobDependencies",
    "QueueConsumer",
    "WorkerConfig",
    "WorkerPool",
    "build_handler_registry",
]
