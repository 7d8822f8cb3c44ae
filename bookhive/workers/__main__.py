"""
Standalone worker process.

Usage:
    python -m bookhive.workers

SIGINT/SIGTERM trigger a graceful shutdown: consumers stop claiming, in-flight
jobs get WORKER_SHUTDOWN_TIMEOUT_SECONDS to finish, then Redis is closed.
"""

import asyncio
import signal
import sys

from bookhive.core.config.settings import get_settings
from bookhive.core.logging.logger import get_logger, setup_logging
from bookhive.infrastructure.cache.redis_client import ConnectionManager
from bookhive.infrastructure.message_queue import JobQueue
from bookhive.workers.pool import WorkerConfig, WorkerPool
from bookhive.workers.registry import JobDependencies, build_handler_registry

logger = get_logger(__name__)


async def run_workers() -> int:
    settings = get_settings()
    setup_logging(settings.logging.LOG_LEVEL, settings.logging.LOG_FORMAT)

    connection = ConnectionManager(settings)
    if await connection.connect() is None:
        logger.error("Workers need Redis; exiting", stage="WORKER.0")
        return 1

    job_queue = JobQueue(connection, lock_duration_ms=settings.worker.WORKER_LOCK_DURATION_MS)
    registry = build_handler_registry(JobDependencies.defaults(connection, settings))
    pool = WorkerPool(job_queue, registry, WorkerConfig.from_settings(settings))

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    await pool.start()
    logger.info("Job workers started", queues=registry.queues())

    try:
        await stop_requested.wait()
    finally:
        await pool.stop()
        await job_queue.close()
        await connection.disconnect()

    return 0


def main() -> None:
    sys.exit(asyncio.run(run_workers()))


if __name__ == "__main__":
    main()
