"""
Queue Worker

Background worker that processes jobs from one queue.
"""

import asyncio
from typing import Callable, Awaitable
from loguru import logger

from src.message_queue.base import JobQueue, QueuedJob, UnrecoverableJobError


class QueueWorker:
    """
    Background worker for processing queued jobs.

    Continuously polls the queue for new jobs and processes them
    using the provided handler function.

    Attributes:
        queue: Job queue to process
        handler: Async function to process each job
        max_concurrent: Maximum number of concurrent job processors
        poll_interval: Seconds to wait between queue polls
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: Callable[[QueuedJob], Awaitable[None]],
        max_concurrent: int = 10,
        poll_interval: float = 1.0,
        name: str = "worker",
    ):
        self.queue = queue
        self.handler = handler
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.name = name
        self._running = False
        self._tasks: set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start the worker.

        Begins polling the queue and processing jobs.
        Runs until stop() is called.
        """
        if self._running:
            logger.warning(f"Worker '{self.name}' already running")
            return

        self._running = True
        await self._poll()

    def start_in_background(self) -> asyncio.Task:
        """
        Schedule the poll loop as a task.

        The worker reports is_running as soon as this returns, before the
        task gets its first turn on the event loop.
        """
        if self._running:
            raise RuntimeError(f"Worker '{self.name}' already running")

        self._running = True
        return asyncio.create_task(self._poll())

    async def _poll(self) -> None:
        logger.info(
            f"🚀 Queue worker '{self.name}' started (max_concurrent={self.max_concurrent}, "
            f"poll_interval={self.poll_interval}s)"
        )

        try:
            while self._running:
                # Do not pull more work than we can run
                if len(self._tasks) >= self.max_concurrent:
                    await asyncio.sleep(self.poll_interval)
                    continue

                job = await self.queue.dequeue()

                if job:
                    task = asyncio.create_task(self._process_job(job))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                else:
                    await asyncio.sleep(self.poll_interval)

        except Exception as e:
            logger.opt(exception=True).error(f"Worker '{self.name}' crashed: {e}")
            raise

        finally:
            logger.info(f"🛑 Queue worker '{self.name}' stopped")

    async def stop(self) -> None:
        """
        Stop the worker.

        Gracefully shuts down:
        1. Stops accepting new jobs
        2. Waits for in-flight jobs to complete
        3. Cancels any remaining tasks
        """
        if not self._running:
            return

        logger.info(f"Stopping queue worker '{self.name}'...")
        self._running = False

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} tasks to complete...")
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._tasks, return_exceptions=True),
                    timeout=30.0
                )
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for tasks, cancelling remaining")
                for task in self._tasks:
                    task.cancel()

    async def _process_job(self, job: QueuedJob) -> None:
        """
        Process a single job with concurrency control.

        UnrecoverableJobError dead-letters the job; anything else goes
        through the queue's retry schedule.
        """
        async with self._semaphore:
            context = {
                "queue": self.name,
                "job_id": job.id,
                "job_type": job.job_type,
                "retry_count": job.retry_count,
            }
            try:
                logger.debug(f"Processing {job.job_type} job {job.id} (retry {job.retry_count})")

                await self.handler(job)
                await self.queue.complete(job.id)

                logger.bind(**context).info(f"✅ Job {job.job_type}:{job.id} processed")

            except UnrecoverableJobError as e:
                logger.bind(**context, error=str(e)).error(
                    f"🚫 Job {job.job_type}:{job.id} failed permanently: {e}"
                )
                await self.queue.fail(job.id, str(e), retryable=False)

            except Exception as e:
                logger.bind(**context, error=str(e)).error(
                    f"❌ Job {job.job_type}:{job.id} failed: {e}"
                )
                await self.queue.fail(job.id, str(e))
