"""
Job Queue Data Model

Queue definitions (retry policy and retention per queue), per-job options
and the job record persisted in Redis.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

import orjson

from bookhive.core.config.constants import JobState, QueueName

BackoffType = Literal["exponential", "fixed", "none"]


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Delay between a failed attempt and the next one.

    Exponential: delay_ms * 2^(attempts_made - 1), so the first retry
    waits exactly ``delay_ms``.
    """

    type: BackoffType = "none"
    delay_ms: int = 0

    def delay_for(self, attempts_made: int) -> int:
        if self.type == "none" or self.delay_ms <= 0:
            return 0
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * 2 ** max(attempts_made - 1, 0)


@dataclass(frozen=True)
class QueueDefinition:
    """Default job options and retention for one queue."""

    name: str
    attempts: int
    backoff: BackoffPolicy
    remove_on_complete: int
    remove_on_fail: int


QUEUE_DEFINITIONS: dict[str, QueueDefinition] = {
    QueueName.EMAIL.value: QueueDefinition(
        name=QueueName.EMAIL.value,
        attempts=3,
        backoff=BackoffPolicy("exponential", 2000),
        remove_on_complete=100,
        remove_on_fail=50,
    ),
    QueueName.NOTIFICATION.value: QueueDefinition(
        name=QueueName.NOTIFICATION.value,
        attempts=2,
        backoff=BackoffPolicy("exponential", 1000),
        remove_on_complete=50,
        remove_on_fail=25,
    ),
    QueueName.IMAGE_PROCESSING.value: QueueDefinition(
        name=QueueName.IMAGE_PROCESSING.value,
        attempts=2,
        backoff=BackoffPolicy("exponential", 5000),
        remove_on_complete=20,
        remove_on_fail=10,
    ),
    QueueName.CLEANUP.value: QueueDefinition(
        name=QueueName.CLEANUP.value,
        attempts=1,
        backoff=BackoffPolicy(),
        remove_on_complete=10,
        remove_on_fail=5,
    ),
}


@dataclass
class JobOptions:
    """Per-job overrides of the queue defaults."""

    attempts: int | None = None
    backoff: BackoffPolicy | None = None
    delay_ms: int = 0


@dataclass
class Job:
    """A unit of background work and its lifecycle bookkeeping."""

    id: str
    queue_name: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    attempts_made: int = 0
    max_attempts: int = 1
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    state: str = JobState.WAITING.value
    created_at: int = field(default_factory=now_ms)
    processed_at: int | None = None
    finished_at: int | None = None
    failed_reason: str | None = None
    return_value: Any = None
    delay_ms: int = 0
    repeat_key: str | None = None

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempts_made, 0)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        data = dict(data)
        backoff = data.pop("backoff", None) or {}
        return cls(backoff=BackoffPolicy(**backoff), **data)

    def dumps(self) -> bytes:
        return orjson.dumps(self.to_dict())

    @classmethod
    def loads(cls, raw: str | bytes) -> "Job":
        return cls.from_dict(orjson.loads(raw))
