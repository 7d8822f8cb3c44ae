"""
Job Queue Facade - Redis-Backed Background Jobs

Architecture:
    JobQueue (Public API)
        ├── Enqueue (immediate, delayed, recurring via croniter)
        ├── Broker transitions (promote, claim, complete, fail)
        ├── Retention (keep the last N completed / failed)
        └── Introspection and admin (stats, health, retry, clear)

Redis Layout (per queue q):
    jobs:<q>:id          counter, next job id
    jobs:<q>:job:<id>    orjson job record
    jobs:<q>:waiting     list, FIFO of ready ids
    jobs:<q>:active      list, ids being processed
    jobs:<q>:delayed     sorted set, ids scored by due time (ms)
    jobs:<q>:completed   list, newest first
    jobs:<q>:failed      list, newest first
    jobs:<q>:repeat      hash, recurring definitions
    jobs:<q>:lock:<id>   lease held by the worker running <id>
    jobs:<q>:stalled     set, unlocked active ids awaiting a second sweep

Delivery:
    At-least-once. A job moved to ``active`` by LMOVE belongs to exactly one
    consumer; ZREM decides which consumer promotes a due delayed job.
    A claimed job carries a lease that its worker renews. When the lease
    lapses (worker crash, cancellation at shutdown) recover_stalled() counts
    the attempt as failed, so the job retries or fails terminally.

Degraded Mode:
    With no broker, enqueue operations log a warning and return None so
    callers never block on background work.
"""

import contextlib
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

import orjson
from croniter import croniter

from bookhive.core.config.constants import (
    CLEARABLE_JOB_STATES,
    JOB_LOCK_DURATION_MS,
    JOB_STALLED_REASON,
    KEY_JOBS,
    JobState,
)
from bookhive.core.exceptions import JobNotFoundError, JobResultError, QueueError, UnknownQueueError
from bookhive.core.logging.logger import get_logger, log_stage
from bookhive.infrastructure.cache.redis_client import BROKER_ERRORS, ConnectionManager
from bookhive.infrastructure.message_queue.models import (
    QUEUE_DEFINITIONS,
    BackoffPolicy,
    Job,
    JobOptions,
    QueueDefinition,
    now_ms,
)

logger = get_logger(__name__)


class QueueKeys:
    """Key names for one queue."""

    def __init__(self, queue_name: str):
        prefix = f"{KEY_JOBS}:{queue_name}"
        self.id = f"{prefix}:id"
        self.waiting = f"{prefix}:waiting"
        self.active = f"{prefix}:active"
        self.delayed = f"{prefix}:delayed"
        self.completed = f"{prefix}:completed"
        self.failed = f"{prefix}:failed"
        self.repeat = f"{prefix}:repeat"
        self.stalled = f"{prefix}:stalled"
        self._job_prefix = f"{prefix}:job"
        self._lock_prefix = f"{prefix}:lock"

    def job(self, job_id: str) -> str:
        return f"{self._job_prefix}:{job_id}"

    def lock(self, job_id: str) -> str:
        return f"{self._lock_prefix}:{job_id}"


def next_cron_run_ms(cron: str, after_ms: int | None = None) -> int:
    """Epoch ms of the first cron occurrence strictly after ``after_ms``."""
    base = datetime.fromtimestamp((after_ms or now_ms()) / 1000, tz=timezone.utc)
    return int(croniter(cron, base).get_next(datetime).timestamp() * 1000)


class JobQueue:
    """
    Multi-queue job facade over the shared connection manager.

    Usage:
        queue = JobQueue(connection)
        job = await queue.schedule_job("email", "send-welcome-email", {"user": user})
        await queue.schedule_recurring_job("cleanup", "comprehensive-cleanup", {}, "0 3 * * *")
    """

    def __init__(
        self,
        connection: ConnectionManager,
        definitions: dict[str, QueueDefinition] | None = None,
        lock_duration_ms: int = JOB_LOCK_DURATION_MS,
    ):
        self._connection = connection
        self._lock_duration_ms = lock_duration_ms
        self._definitions = dict(definitions if definitions is not None else QUEUE_DEFINITIONS)
        self._keys = {name: QueueKeys(name) for name in self._definitions}
        self._closed = False

    # =========================================================================
    # Helpers
    # =========================================================================

    @property
    def queue_names(self) -> list[str]:
        return list(self._definitions)

    @property
    def is_available(self) -> bool:
        return not self._closed and self._connection.is_connected

    def definition(self, queue_name: str) -> QueueDefinition:
        """
        Raises:
            UnknownQueueError: If ``queue_name`` is not defined
        """
        try:
            return self._definitions[queue_name]
        except KeyError:
            raise UnknownQueueError(
                f"Unknown queue: {queue_name}",
                details={"queue": queue_name, "known": self.queue_names},
            ) from None

    def _client(self):
        client = self._connection.client
        if client is None or self._closed:
            raise QueueError("Job queues not initialized", details={"reason": "broker unavailable"})
        return client

    @contextlib.contextmanager
    def _broker_call(self, operation: str, queue_name: str):
        try:
            yield
        except BROKER_ERRORS as e:
            raise QueueError.from_exception(
                e, message=f"Queue operation '{operation}' failed: {e}", queue=queue_name
            ) from e

    # =========================================================================
    # Enqueue
    # =========================================================================

    async def schedule_job(
        self,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any] | None = None,
        options: JobOptions | None = None,
    ) -> Job | None:
        """
        Enqueue a job.

        STAGE-JOB.1: Enqueue

        Returns:
            The stored Job, or None when the broker is unavailable

        Raises:
            UnknownQueueError: If ``queue_name`` is not defined
        """
        definition = self.definition(queue_name)
        if not self.is_available:
            logger.warning(
                "Job queues not initialized, skipping job scheduling",
                stage="JOB.1",
                queue=queue_name,
                job_type=job_type,
            )
            return None

        try:
            job = await self._add(definition, job_type, payload or {}, options or JobOptions())
        except QueueError as e:
            logger.error("Failed to schedule job", stage="JOB.1", job_type=job_type, **e.to_dict())
            return None

        log_stage(
            logger,
            "JOB.1",
            "Job scheduled",
            queue=queue_name,
            job_type=job_type,
            job_id=job.id,
            delay_ms=job.delay_ms,
        )
        return job

    async def schedule_delayed_job(
        self,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any] | None,
        delay_ms: int,
        options: JobOptions | None = None,
    ) -> Job | None:
        options = replace(options or JobOptions(), delay_ms=max(int(delay_ms), 0))
        return await self.schedule_job(queue_name, job_type, payload, options)

    async def schedule_recurring_job(
        self,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any] | None,
        cron: str,
        options: JobOptions | None = None,
    ) -> Job | None:
        """
        Register a cron schedule and enqueue its next occurrence.

        Registering the same (job_type, cron) twice returns the pending
        occurrence instead of creating a second schedule.

        Raises:
            UnknownQueueError: If ``queue_name`` is not defined
            ValueError: If ``cron`` is not a valid cron expression
        """
        definition = self.definition(queue_name)
        if not croniter.is_valid(cron):
            raise ValueError(f"Invalid cron expression: {cron!r}")

        if not self.is_available:
            logger.warning(
                "Job queues not initialized, skipping recurring job scheduling",
                stage="JOB.1",
                queue=queue_name,
                job_type=job_type,
            )
            return None

        keys = self._keys[queue_name]
        repeat_key = f"{job_type}:{cron}"
        options = options or JobOptions()

        try:
            client = self._client()
            with self._broker_call("schedule_recurring", queue_name):
                existing = await client.hget(keys.repeat, repeat_key)
            if existing:
                pending = await self.get_job(queue_name, orjson.loads(existing)["next_job_id"])
                if pending is not None and pending.state in (JobState.DELAYED.value, JobState.WAITING.value):
                    logger.info("Recurring job already registered", queue=queue_name, repeat_key=repeat_key)
                    return pending

            entry = {
                "type": job_type,
                "cron": cron,
                "payload": payload or {},
                "attempts": options.attempts,
                "backoff": None if options.backoff is None else {
                    "type": options.backoff.type,
                    "delay_ms": options.backoff.delay_ms,
                },
            }
            job = await self._add_occurrence(definition, entry, repeat_key)
        except QueueError as e:
            logger.error("Failed to schedule recurring job", stage="JOB.1", job_type=job_type, **e.to_dict())
            return None

        log_stage(
            logger, "JOB.1", "Recurring job registered", queue=queue_name, repeat_key=repeat_key, job_id=job.id
        )
        return job

    async def remove_recurring_job(self, queue_name: str, job_type: str, cron: str) -> bool:
        """Drop a cron schedule and its pending occurrence."""
        self.definition(queue_name)
        if not self.is_available:
            return False

        keys = self._keys[queue_name]
        repeat_key = f"{job_type}:{cron}"
        client = self._client()
        with self._broker_call("remove_recurring", queue_name):
            existing = await client.hget(keys.repeat, repeat_key)
            if not existing:
                return False
            next_job_id = orjson.loads(existing)["next_job_id"]
            async with client.pipeline(transaction=True) as pipe:
                pipe.hdel(keys.repeat, repeat_key)
                pipe.zrem(keys.delayed, next_job_id)
                pipe.lrem(keys.waiting, 0, next_job_id)
                pipe.delete(keys.job(next_job_id))
                await pipe.execute()

        logger.info("Recurring job removed", queue=queue_name, repeat_key=repeat_key)
        return True

    async def _add(
        self,
        definition: QueueDefinition,
        job_type: str,
        payload: dict[str, Any],
        options: JobOptions,
        repeat_key: str | None = None,
    ) -> Job:
        client = self._client()
        keys = self._keys[definition.name]

        with self._broker_call("add", definition.name):
            job_id = str(await client.incr(keys.id))
            job = Job(
                id=job_id,
                queue_name=definition.name,
                type=job_type,
                payload=payload,
                max_attempts=max(options.attempts or definition.attempts, 1),
                backoff=options.backoff or definition.backoff,
                delay_ms=options.delay_ms,
                repeat_key=repeat_key,
            )

            async with client.pipeline(transaction=True) as pipe:
                if options.delay_ms > 0:
                    job.state = JobState.DELAYED.value
                    pipe.set(keys.job(job_id), job.dumps())
                    pipe.zadd(keys.delayed, {job_id: job.created_at + options.delay_ms})
                else:
                    pipe.set(keys.job(job_id), job.dumps())
                    pipe.rpush(keys.waiting, job_id)
                await pipe.execute()

        return job

    async def _add_occurrence(self, definition: QueueDefinition, entry: dict[str, Any], repeat_key: str) -> Job:
        """Enqueue the next cron occurrence and point the schedule at it."""
        backoff = entry.get("backoff")
        options = JobOptions(
            attempts=entry.get("attempts"),
            backoff=BackoffPolicy(**backoff) if backoff else None,
            delay_ms=max(next_cron_run_ms(entry["cron"]) - now_ms(), 1),
        )
        job = await self._add(definition, entry["type"], entry["payload"], options, repeat_key=repeat_key)

        client = self._client()
        with self._broker_call("repeat", definition.name):
            await client.hset(
                self._keys[definition.name].repeat,
                repeat_key,
                orjson.dumps({**entry, "next_job_id": job.id}),
            )
        return job

    # =========================================================================
    # Broker transitions (used by the worker pool)
    # =========================================================================

    async def promote_delayed(self, queue_name: str, now: int | None = None) -> int:
        """
        Move due delayed jobs to waiting.

        Returns:
            Number of jobs this caller promoted
        """
        self.definition(queue_name)
        client = self._client()
        keys = self._keys[queue_name]
        now = now if now is not None else now_ms()

        promoted = 0
        with self._broker_call("promote", queue_name):
            due = await client.zrangebyscore(keys.delayed, "-inf", now)
            for job_id in due:
                # Only the consumer whose ZREM succeeds owns the promotion
                if not await client.zrem(keys.delayed, job_id):
                    continue
                raw = await client.get(keys.job(job_id))
                if raw is None:
                    continue
                job = Job.loads(raw)
                job.state = JobState.WAITING.value
                async with client.pipeline(transaction=True) as pipe:
                    pipe.set(keys.job(job_id), job.dumps())
                    pipe.rpush(keys.waiting, job_id)
                    await pipe.execute()
                promoted += 1

        if promoted:
            logger.debug("Delayed jobs promoted", stage="JOB.2", queue=queue_name, count=promoted)
        return promoted

    async def claim_next(self, queue_name: str) -> Job | None:
        """
        Move the oldest waiting job to active.

        STAGE-JOB.2: Claim

        Claiming an occurrence of a recurring job schedules the following one.
        """
        self.definition(queue_name)
        client = self._client()
        keys = self._keys[queue_name]

        with self._broker_call("claim", queue_name):
            job_id = await client.lmove(keys.waiting, keys.active, "LEFT", "RIGHT")
            if job_id is None:
                return None

            raw = await client.get(keys.job(job_id))
            if raw is None:
                await client.lrem(keys.active, 1, job_id)
                logger.warning("Claimed job has no record, dropping", queue=queue_name, job_id=job_id)
                return None

            job = Job.loads(raw)
            job.state = JobState.ACTIVE.value
            job.processed_at = now_ms()
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(keys.job(job_id), job.dumps())
                pipe.set(keys.lock(job_id), "1", px=self._lock_duration_ms)
                pipe.srem(keys.stalled, job_id)
                await pipe.execute()

        if job.repeat_key:
            await self._schedule_following(job)

        return job

    async def _schedule_following(self, job: Job) -> None:
        client = self._client()
        keys = self._keys[job.queue_name]
        with self._broker_call("repeat", job.queue_name):
            raw = await client.hget(keys.repeat, job.repeat_key)
        if not raw:
            return
        entry = orjson.loads(raw)
        if entry.get("next_job_id") != job.id:
            return
        entry.pop("next_job_id", None)
        following = await self._add_occurrence(self.definition(job.queue_name), entry, job.repeat_key)
        logger.debug("Next occurrence scheduled", queue=job.queue_name, job_id=following.id, repeat_key=job.repeat_key)

    async def complete(self, job: Job, result: Any = None) -> Job:
        """
        Record a successful attempt.

        STAGE-JOB.3: Completed

        Raises:
            JobResultError: If ``result`` cannot be serialized (the job is left untouched)
            QueueError: If the broker call fails
        """
        definition = self.definition(job.queue_name)
        client = self._client()
        keys = self._keys[job.queue_name]

        try:
            orjson.dumps(result)
        except TypeError as e:
            raise JobResultError(
                f"Job result is not serializable: {e}",
                details={"queue": job.queue_name, "job_id": job.id, "result_type": type(result).__name__},
            ) from e

        job.attempts_made += 1
        job.state = JobState.COMPLETED.value
        job.finished_at = now_ms()
        job.return_value = result
        job.failed_reason = None

        with self._broker_call("complete", job.queue_name):
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(keys.job(job.id), job.dumps())
                pipe.lrem(keys.active, 1, job.id)
                pipe.delete(keys.lock(job.id))
                pipe.lpush(keys.completed, job.id)
                await pipe.execute()
            await self._apply_retention(client, keys, keys.completed, definition.remove_on_complete)

        return job

    async def fail(self, job: Job, error: BaseException | str) -> Job:
        """
        Record a failed attempt: retry with backoff or fail terminally.

        STAGE-JOB.4: Failed
        """
        definition = self.definition(job.queue_name)
        client = self._client()
        keys = self._keys[job.queue_name]

        job.attempts_made += 1
        job.failed_reason = str(error)
        retry = job.attempts_made < job.max_attempts

        with self._broker_call("fail", job.queue_name):
            async with client.pipeline(transaction=True) as pipe:
                pipe.lrem(keys.active, 1, job.id)
                pipe.delete(keys.lock(job.id))
                if retry:
                    delay = job.backoff.delay_for(job.attempts_made)
                    job.delay_ms = delay
                    if delay > 0:
                        job.state = JobState.DELAYED.value
                        pipe.zadd(keys.delayed, {job.id: now_ms() + delay})
                    else:
                        job.state = JobState.WAITING.value
                        pipe.rpush(keys.waiting, job.id)
                else:
                    job.state = JobState.FAILED.value
                    job.finished_at = now_ms()
                    pipe.lpush(keys.failed, job.id)
                pipe.set(keys.job(job.id), job.dumps())
                await pipe.execute()

            if not retry:
                await self._apply_retention(client, keys, keys.failed, definition.remove_on_fail)

        return job

    # =========================================================================
    # Leases and stalled jobs
    # =========================================================================

    async def extend_lock(self, job: Job) -> bool:
        """
        Renew the lease on a running job.

        Returns:
            False if the lease already lapsed (the job may have been recovered)
        """
        client = self._client()
        keys = self._keys[job.queue_name]
        with self._broker_call("extend_lock", job.queue_name):
            return bool(await client.pexpire(keys.lock(job.id), self._lock_duration_ms))

    async def release_lock(self, job: Job) -> None:
        """Drop a lease so the next stalled sweep recovers the job at once."""
        client = self._client()
        with self._broker_call("release_lock", job.queue_name):
            await client.delete(self._keys[job.queue_name].lock(job.id))

    async def recover_stalled(self, queue_name: str) -> list[Job]:
        """
        Return stalled jobs to the retry path.

        STAGE-JOB.5: Stalled

        An active job without a lease has stalled. Recovery is recorded as a
        failed attempt, so the job is retried with backoff or fails for good.
        An unleased id whose record is not marked active yet may be a claim in
        flight; it is recovered only if a second sweep still finds it unleased.

        Returns:
            The recovered jobs, after their failure was recorded
        """
        self.definition(queue_name)
        client = self._client()
        keys = self._keys[queue_name]

        stalled: list[Job] = []
        with self._broker_call("recover_stalled", queue_name):
            suspects = set(await client.smembers(keys.stalled))
            await client.delete(keys.stalled)

            unconfirmed: list[str] = []
            for job_id in await client.lrange(keys.active, 0, -1):
                if await client.exists(keys.lock(job_id)):
                    continue
                raw = await client.get(keys.job(job_id))
                if raw is None:
                    await client.lrem(keys.active, 1, job_id)
                    continue
                job = Job.loads(raw)
                if job.state != JobState.ACTIVE.value and job_id not in suspects:
                    unconfirmed.append(job_id)
                    continue
                # Only the sweeper whose LREM succeeds owns the recovery
                if await client.lrem(keys.active, 1, job_id):
                    stalled.append(job)

            if unconfirmed:
                await client.sadd(keys.stalled, *unconfirmed)

        recovered = [await self.fail(job, JOB_STALLED_REASON) for job in stalled]
        if recovered:
            logger.warning(
                "Recovered stalled jobs",
                stage="JOB.5",
                queue=queue_name,
                job_ids=[job.id for job in recovered],
            )
        return recovered

    async def _apply_retention(self, client, keys: QueueKeys, list_key: str, keep: int) -> int:
        """Trim ``list_key`` to its newest ``keep`` ids and delete the pruned records."""
        pruned = await client.lrange(list_key, max(keep, 0), -1)
        if not pruned:
            return 0
        async with client.pipeline(transaction=True) as pipe:
            if keep > 0:
                pipe.ltrim(list_key, 0, keep - 1)
            else:
                pipe.delete(list_key)
            pipe.delete(*(keys.job(job_id) for job_id in pruned))
            await pipe.execute()
        return len(pruned)

    # =========================================================================
    # Introspection
    # =========================================================================

    async def get_job(self, queue_name: str, job_id: str) -> Job | None:
        self.definition(queue_name)
        if not self.is_available:
            return None
        client = self._client()
        with self._broker_call("get_job", queue_name):
            raw = await client.get(self._keys[queue_name].job(str(job_id)))
        return Job.loads(raw) if raw else None

    async def require_job(self, queue_name: str, job_id: str) -> Job:
        """
        Raises:
            JobNotFoundError: If the job was pruned or never existed
        """
        job = await self.get_job(queue_name, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found", details={"queue": queue_name, "job_id": job_id})
        return job

    async def get_queue_stats(self, queue_name: str) -> dict[str, Any]:
        """Counts per state. Carries an ``error`` field instead of counts when degraded."""
        self.definition(queue_name)
        if not self.is_available:
            return {"name": queue_name, "error": "Job queues not initialized"}

        client = self._client()
        keys = self._keys[queue_name]
        try:
            with self._broker_call("stats", queue_name):
                async with client.pipeline(transaction=False) as pipe:
                    pipe.llen(keys.waiting)
                    pipe.llen(keys.active)
                    pipe.llen(keys.completed)
                    pipe.llen(keys.failed)
                    pipe.zcard(keys.delayed)
                    waiting, active, completed, failed, delayed = await pipe.execute()
        except QueueError as e:
            logger.error("Error getting queue stats", queue=queue_name, error=e.message)
            return {"name": queue_name, "error": e.message}

        return {
            "name": queue_name,
            "waiting": waiting,
            "active": active,
            "completed": completed,
            "failed": failed,
            "delayed": delayed,
        }

    async def get_all_queue_stats(self) -> list[dict[str, Any]]:
        return [await self.get_queue_stats(name) for name in self.queue_names]

    async def get_queues_health(self) -> dict[str, Any]:
        timestamp = datetime.now(timezone.utc).isoformat()
        if not self.is_available:
            return {"healthy": False, "error": "Job queues not initialized", "queues": [], "timestamp": timestamp}

        stats = await self.get_all_queue_stats()
        return {
            "healthy": all("error" not in s for s in stats),
            "queues": stats,
            "timestamp": timestamp,
        }

    # =========================================================================
    # Admin
    # =========================================================================

    async def retry_failed_jobs(self, queue_name: str) -> int:
        """Move every failed job back to waiting with a fresh attempt budget."""
        self.definition(queue_name)
        if not self.is_available:
            logger.warning("Job queues not initialized, cannot retry failed jobs", queue=queue_name)
            return 0

        client = self._client()
        keys = self._keys[queue_name]
        retried = 0
        with self._broker_call("retry_failed", queue_name):
            while (job_id := await client.rpop(keys.failed)) is not None:
                raw = await client.get(keys.job(job_id))
                if raw is None:
                    continue
                job = Job.loads(raw)
                job.attempts_made = 0
                job.state = JobState.WAITING.value
                job.failed_reason = None
                job.finished_at = None
                async with client.pipeline(transaction=True) as pipe:
                    pipe.set(keys.job(job_id), job.dumps())
                    pipe.rpush(keys.waiting, job_id)
                    await pipe.execute()
                retried += 1

        logger.info("Retried failed jobs", queue=queue_name, count=retried)
        return retried

    async def clear_queue(self, queue_name: str, status: str = JobState.COMPLETED.value) -> int:
        """
        Remove every job in one state, records included.

        Defaults to finished jobs. Active jobs cannot be cleared.

        Returns:
            Number of jobs removed

        Raises:
            ValueError: If ``status`` is not one of CLEARABLE_JOB_STATES
        """
        self.definition(queue_name)
        if status not in CLEARABLE_JOB_STATES:
            raise ValueError(f"Cannot clear jobs in state {status!r}; expected one of {CLEARABLE_JOB_STATES}")
        status = JobState(status).value
        if not self.is_available:
            logger.warning("Job queues not initialized, cannot clear queue", queue=queue_name)
            return 0

        client = self._client()
        keys = self._keys[queue_name]
        state_key = getattr(keys, status)
        with self._broker_call("clear", queue_name):
            if status == JobState.DELAYED.value:
                ids = await client.zrange(state_key, 0, -1)
            else:
                ids = await client.lrange(state_key, 0, -1)
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(state_key)
                if ids:
                    pipe.delete(*(keys.job(job_id) for job_id in ids))
                await pipe.execute()

        logger.info("Cleared jobs", queue=queue_name, status=status, count=len(ids))
        return len(ids)

    async def close(self) -> None:
        """Stop accepting work. The connection itself belongs to the application."""
        if not self._closed:
            self._closed = True
            logger.info("Job queues closed")
