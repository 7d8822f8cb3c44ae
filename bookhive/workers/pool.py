"""
Worker Pool - Queue Consumers

Architecture:
    WorkerPool (Public API)
        └── QueueConsumer (one per queue with handlers)
              ├── sweep for stalled jobs (lease lapsed)
              ├── promote due delayed jobs
              ├── claim while a concurrency slot is free
              ├── run each job in its own task, renewing its lease
              └── report the outcome (complete / fail with backoff)

Isolation:
    Each queue has its own semaphore, so a slow image job cannot starve
    email delivery.

Shutdown:
    stop() signals every loop, waits for in-flight jobs up to the
    shutdown timeout, then cancels what is left. A cancelled job stays in
    the active list with its lease released, so the next stalled sweep
    records the interrupted attempt.
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass

from bookhive.core.config.settings import Settings, get_settings
from bookhive.core.exceptions import JobResultError, QueueError
from bookhive.core.logging.logger import get_logger
from bookhive.infrastructure.message_queue import Job, JobQueue
from bookhive.workers.registry import HandlerRegistry

logger = get_logger(__name__)


@dataclass
class WorkerConfig:
    """
    Worker configuration parameters.

    Attributes:
        concurrency: Simultaneous jobs per queue
        poll_interval_ms: Idle wait between polls
        error_backoff_seconds: Backoff after consumer loop errors
        shutdown_timeout_seconds: Graceful shutdown timeout
        lock_duration_ms: Lease on a running job, renewed every half lease
        stalled_interval_ms: Time between stalled job sweeps
    """
    concurrency: int = 5
    poll_interval_ms: int = 1000
    error_backoff_seconds: float = 5
    shutdown_timeout_seconds: float = 30.0
    lock_duration_ms: int = 30000
    stalled_interval_ms: int = 30000

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "WorkerConfig":
        cfg = (settings or get_settings()).worker
        return cls(
            concurrency=cfg.WORKER_CONCURRENCY,
            poll_interval_ms=cfg.WORKER_POLL_INTERVAL_MS,
            error_backoff_seconds=cfg.WORKER_ERROR_BACKOFF_SECONDS,
            shutdown_timeout_seconds=cfg.WORKER_SHUTDOWN_TIMEOUT_SECONDS,
            lock_duration_ms=cfg.WORKER_LOCK_DURATION_MS,
            stalled_interval_ms=cfg.WORKER_STALLED_INTERVAL_MS,
        )


class QueueConsumer:
    """Consumes one queue with bounded concurrency."""

    def __init__(
        self,
        queue_name: str,
        job_queue: JobQueue,
        registry: HandlerRegistry,
        config: WorkerConfig | None = None,
    ):
        self._queue_name = queue_name
        self._job_queue = job_queue
        self._registry = registry
        self._config = config or WorkerConfig()
        self._semaphore = asyncio.Semaphore(self._config.concurrency)
        self._tasks: set[asyncio.Task] = set()
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._last_sweep: float | None = None

    @property
    def queue_name(self) -> str:
        return self._queue_name

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        """
        Run the consumer loop until stop() is called.

        Errors in the loop itself (broker outages) are logged and followed by
        a backoff; they never end the loop.
        """
        self._running = True
        self._shutdown_event.clear()

        logger.info(
            "Consumer loop started",
            stage="WORKER.1",
            queue=self._queue_name,
            concurrency=self._config.concurrency,
        )

        while self._running and not self._shutdown_event.is_set():
            try:
                claimed = await self._fill()
                if not claimed:
                    await self._idle(self._config.poll_interval_ms / 1000)
            except asyncio.CancelledError:
                logger.info("Consumer loop cancelled", queue=self._queue_name)
                break
            except Exception as e:
                logger.error(
                    "Consumer loop error, backing off",
                    stage="WORKER.E",
                    queue=self._queue_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._idle(self._config.error_backoff_seconds)

        logger.info("Consumer loop stopped", queue=self._queue_name)

    def stop(self) -> None:
        """Signal the loop to exit after the current poll."""
        self._running = False
        self._shutdown_event.set()

    async def _idle(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _sweep_if_due(self) -> None:
        interval = self._config.stalled_interval_ms / 1000
        now = time.monotonic()
        if self._last_sweep is not None and now - self._last_sweep < interval:
            return
        self._last_sweep = now
        await self.recover_stalled()

    async def recover_stalled(self) -> list[Job]:
        """Record a failed attempt for every job whose lease lapsed."""
        recovered = await self._job_queue.recover_stalled(self._queue_name)
        for job in recovered:
            logger.warning(
                "Job stalled",
                stage="WORKER.4",
                queue=job.queue_name,
                job_id=job.id,
                job_type=job.type,
                state=job.state,
                attempts_made=job.attempts_made,
            )
        return recovered

    async def _fill(self) -> int:
        """Sweep, promote due jobs, then claim while slots are free. Returns jobs started."""
        await self._sweep_if_due()
        await self._job_queue.promote_delayed(self._queue_name)

        started = 0
        while not self._shutdown_event.is_set() and not self._semaphore.locked():
            await self._semaphore.acquire()
            try:
                job = await self._job_queue.claim_next(self._queue_name)
            except BaseException:
                self._semaphore.release()
                raise
            if job is None:
                self._semaphore.release()
                break

            task = asyncio.create_task(self._run_and_release(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started += 1
        return started

    async def _run_and_release(self, job: Job) -> None:
        try:
            await self.process(job)
        except Exception as e:
            logger.error(
                "Unexpected error while processing job",
                stage="WORKER.E",
                queue=job.queue_name,
                job_id=job.id,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._semaphore.release()

    async def _keep_lease(self, job: Job) -> None:
        interval = self._config.lock_duration_ms / 2000
        while True:
            await asyncio.sleep(interval)
            try:
                if not await self._job_queue.extend_lock(job):
                    logger.warning("Job lease lapsed while running", queue=job.queue_name, job_id=job.id)
            except QueueError as e:
                logger.warning("Could not renew job lease", queue=job.queue_name, job_id=job.id, error=e.message)

    async def process(self, job: Job) -> Job:
        """
        Run one claimed job and record the outcome.

        STAGE-WORKER.2: Job execution

        The job's lease is renewed while the handler runs. If the task is
        cancelled the lease is released and the cancellation propagates.
        """
        lease = asyncio.create_task(self._keep_lease(job))
        try:
            return await self._execute(job)
        except asyncio.CancelledError:
            with contextlib.suppress(QueueError):
                await self._job_queue.release_lock(job)
            raise
        finally:
            lease.cancel()

    async def _execute(self, job: Job) -> Job:
        job_log = logger.bind(queue=job.queue_name, job_id=job.id, job_type=job.type)
        start = time.perf_counter()

        try:
            handler = self._registry.get(job.queue_name, job.type)
            result = await handler(job.payload)
        except Exception as e:
            return await self._record_failure(job, e, job_log)

        try:
            job = await self._job_queue.complete(job, result)
        except JobResultError as e:
            return await self._record_failure(job, e, job_log)
        except QueueError as qe:
            job_log.error("Could not record job completion", error=qe.message)
            return job

        job_log.info(
            "Job completed",
            stage="WORKER.3",
            attempts_made=job.attempts_made,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return job

    async def _record_failure(self, job: Job, error: Exception, job_log) -> Job:
        try:
            job = await self._job_queue.fail(job, error)
        except QueueError as qe:
            job_log.error("Could not record job failure", error=qe.message)
            return job
        job_log.warning(
            "Job failed",
            stage="WORKER.4",
            state=job.state,
            attempts_made=job.attempts_made,
            max_attempts=job.max_attempts,
            error=str(error),
            error_type=type(error).__name__,
        )
        return job

    async def run_once(self) -> list[Job]:
        """Sweep, promote, claim up to ``concurrency`` jobs and wait for all of them."""
        await self.recover_stalled()
        await self._job_queue.promote_delayed(self._queue_name)

        claimed: list[Job] = []
        while len(claimed) < self._config.concurrency:
            job = await self._job_queue.claim_next(self._queue_name)
            if job is None:
                break
            claimed.append(job)

        return list(await asyncio.gather(*(self.process(job) for job in claimed)))

    async def drain(self, timeout: float) -> int:
        """
        Wait for in-flight jobs, cancelling any still running after ``timeout``.

        Returns:
            Number of jobs cancelled
        """
        if not self._tasks:
            return 0
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled in-flight jobs at shutdown", queue=self._queue_name, count=len(pending))
        return len(pending)


class WorkerPool:
    """
    One consumer per queue that has handlers.

    Usage:
        pool = WorkerPool(job_queue, registry, WorkerConfig.from_settings())
        await pool.start()
        ...
        await pool.stop()
    """

    def __init__(self, job_queue: JobQueue, registry: HandlerRegistry, config: WorkerConfig | None = None):
        self._job_queue = job_queue
        self._registry = registry
        self._config = config or WorkerConfig()
        self._consumers: dict[str, QueueConsumer] = {}
        self._loops: list[asyncio.Task] = []

    @property
    def consumers(self) -> dict[str, QueueConsumer]:
        return dict(self._consumers)

    @property
    def is_running(self) -> bool:
        return any(not loop.done() for loop in self._loops)

    async def start(self) -> None:
        if self.is_running:
            return

        for queue_name in self._registry.queues():
            consumer = QueueConsumer(queue_name, self._job_queue, self._registry, self._config)
            self._consumers[queue_name] = consumer
            self._loops.append(asyncio.create_task(consumer.start(), name=f"consumer:{queue_name}"))

        logger.info("Worker pool started", stage="WORKER.0", queues=list(self._consumers))

    async def stop(self) -> None:
        """Stop every consumer, draining in-flight jobs within the shutdown timeout."""
        if not self._loops:
            return

        logger.info("Shutting down job workers", stage="WORKER.5")
        for consumer in self._consumers.values():
            consumer.stop()

        timeout = self._config.shutdown_timeout_seconds
        _, pending = await asyncio.wait(self._loops, timeout=timeout)
        for loop in pending:
            loop.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)

        cancelled = 0
        for consumer in self._consumers.values():
            cancelled += await consumer.drain(timeout)

        self._loops.clear()
        self._consumers.clear()
        logger.info("All job workers closed", stage="WORKER.5", cancelled_jobs=cancelled)
