"""
Unit Tests for QueueConsumer and WorkerPool

Consumers run against the in-memory Redis with a short poll interval.
"""

import asyncio

import pytest

from bookhive.infrastructure.message_queue import BackoffPolicy, JobOptions, JobQueue
from bookhive.workers import QueueConsumer, WorkerConfig, WorkerPool
from bookhive.workers.registry import HandlerRegistry

FAST = WorkerConfig(concurrency=2, poll_interval_ms=10, error_backoff_seconds=0.05, shutdown_timeout_seconds=0.2)


async def wait_for_state(job_queue, queue_name: str, job_id: str, state: str, timeout: float = 2.0):
    async def poll():
        while True:
            job = await job_queue.get_job(queue_name, job_id)
            if job is not None and job.state == state:
                return job
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(poll(), timeout)


@pytest.mark.unit
class TestQueueConsumer:
    @pytest.mark.asyncio
    async def test_run_once_completes_job(self, job_queue):
        calls = []

        async def send(payload):
            calls.append(payload)
            return {"success": True}

        registry = HandlerRegistry()
        registry.register("email", "send-email", send)
        job = await job_queue.schedule_job("email", "send-email", {"to": "a@b.c"})

        processed = await QueueConsumer("email", job_queue, registry, FAST).run_once()

        assert [j.state for j in processed] == ["completed"]
        assert calls == [{"to": "a@b.c"}]
        stored = await job_queue.require_job("email", job.id)
        assert stored.return_value == {"success": True}

    @pytest.mark.asyncio
    async def test_failing_handler_schedules_retry(self, job_queue):
        async def broken(payload):
            raise ConnectionError("smtp down")

        registry = HandlerRegistry()
        registry.register("email", "send-email", broken)
        await job_queue.schedule_job("email", "send-email", {})

        [job] = await QueueConsumer("email", job_queue, registry, FAST).run_once()

        assert job.state == "delayed"
        assert job.attempts_made == 1
        assert job.delay_ms == 2000

    @pytest.mark.asyncio
    async def test_missing_handler_counts_as_failure(self, job_queue):
        registry = HandlerRegistry()
        registry.register("email", "send-email", lambda payload: None)
        await job_queue.schedule_job("email", "send-welcome-email", {})

        [job] = await QueueConsumer("email", job_queue, registry, FAST).run_once()

        assert job.state == "delayed"
        assert "send-welcome-email" in job.failed_reason

    @pytest.mark.asyncio
    async def test_run_once_respects_concurrency(self, job_queue):
        async def ok(payload):
            return {"success": True}

        registry = HandlerRegistry()
        registry.register("notification", "send-push-notification", ok)
        for n in range(3):
            await job_queue.schedule_job("notification", "send-push-notification", {"n": n})

        processed = await QueueConsumer("notification", job_queue, registry, FAST).run_once()

        assert len(processed) == 2
        assert (await job_queue.get_queue_stats("notification"))["waiting"] == 1

    @pytest.mark.asyncio
    async def test_unserializable_result_is_a_failed_attempt(self, job_queue):
        async def tagged(payload):
            return {"tags": {"a", "b"}}

        registry = HandlerRegistry()
        registry.register("email", "send-email", tagged)
        await job_queue.schedule_job("email", "send-email", {})

        [job] = await QueueConsumer("email", job_queue, registry, FAST).run_once()

        assert job.state == "delayed"
        assert job.attempts_made == 1
        assert "not serializable" in job.failed_reason
        stats = await job_queue.get_queue_stats("email")
        assert stats["active"] == 0
        assert stats["completed"] == 0

    @pytest.mark.asyncio
    async def test_abandoned_job_is_recovered_and_rerun(self, job_queue):
        calls = []

        async def ok(payload):
            calls.append(payload)
            return {"success": True}

        registry = HandlerRegistry()
        registry.register("notification", "send-socket-notification", ok)
        await job_queue.schedule_job(
            "notification", "send-socket-notification", {"n": 1}, JobOptions(attempts=2, backoff=BackoffPolicy())
        )
        # A worker claimed the job, then died before its lease was renewed
        abandoned = await job_queue.claim_next("notification")
        await job_queue.release_lock(abandoned)

        [job] = await QueueConsumer("notification", job_queue, registry, FAST).run_once()

        assert job.id == abandoned.id
        assert job.state == "completed"
        assert job.attempts_made == 2
        assert calls == [{"n": 1}]
        assert (await job_queue.get_queue_stats("notification"))["active"] == 0

    @pytest.mark.asyncio
    async def test_running_job_keeps_its_lease(self, connection):
        queue = JobQueue(connection, lock_duration_ms=100)
        config = WorkerConfig(concurrency=1, poll_interval_ms=10, lock_duration_ms=100)

        async def slow(payload):
            await asyncio.sleep(0.3)
            return {"success": True}

        registry = HandlerRegistry()
        registry.register("email", "send-email", slow)
        await queue.schedule_job("email", "send-email", {})

        consumer = QueueConsumer("email", queue, registry, config)
        run = asyncio.create_task(consumer.run_once())
        await asyncio.sleep(0.2)

        assert await queue.recover_stalled("email") == []
        [job] = await run
        assert job.state == "completed"


@pytest.mark.unit
class TestWorkerPool:
    @pytest.mark.asyncio
    async def test_pool_processes_jobs_until_stopped(self, job_queue):
        async def ok(payload):
            return {"echo": payload["n"]}

        registry = HandlerRegistry()
        registry.register("cleanup", "cleanup-temp-files", ok)
        pool = WorkerPool(job_queue, registry, FAST)

        await pool.start()
        assert pool.is_running
        assert list(pool.consumers) == ["cleanup"]

        job = await job_queue.schedule_job("cleanup", "cleanup-temp-files", {"n": 7})
        done = await wait_for_state(job_queue, "cleanup", job.id, "completed")

        await pool.stop()

        assert done.return_value == {"echo": 7}
        assert not pool.is_running
        assert pool.consumers == {}

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, job_queue):
        registry = HandlerRegistry()
        registry.register("cleanup", "cleanup-temp-files", lambda payload: None)
        pool = WorkerPool(job_queue, registry, FAST)

        await pool.start()
        await pool.start()

        assert len(pool.consumers) == 1
        await pool.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_jobs_past_shutdown_timeout(self, job_queue):
        started = asyncio.Event()

        async def hang(payload):
            started.set()
            await asyncio.Event().wait()

        registry = HandlerRegistry()
        registry.register("image-processing", "optimize-image", hang)
        pool = WorkerPool(job_queue, registry, FAST)
        await job_queue.schedule_job("image-processing", "optimize-image", {})

        await pool.start()
        await asyncio.wait_for(started.wait(), 2.0)
        await pool.stop()

        assert not pool.is_running
        assert (await job_queue.get_queue_stats("image-processing"))["active"] == 1

        [recovered] = await QueueConsumer("image-processing", job_queue, registry, FAST).recover_stalled()
        assert recovered.state == "delayed"
        assert recovered.attempts_made == 1
        assert (await job_queue.get_queue_stats("image-processing"))["active"] == 0

    @pytest.mark.asyncio
    async def test_stop_without_start(self, job_queue):
        await WorkerPool(job_queue, HandlerRegistry(), FAST).stop()

    def test_config_from_settings(self, test_settings):
        config = WorkerConfig.from_settings(test_settings)

        assert config.poll_interval_ms == 10
        assert config.shutdown_timeout_seconds == 2.0
        assert config.lock_duration_ms == 30000
        assert config.stalled_interval_ms == 30000
        assert config.concurrency == test_settings.worker.WORKER_CONCURRENCY
