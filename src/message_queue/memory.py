"""
In-Memory Job Queue

Simple in-memory queue implementation for single-process deployments and tests.
Uses asyncio primitives for safe concurrent async operations.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from src.message_queue.base import (
    JobQueue,
    QueuedJob,
    QueueMetrics,
    JobStatus,
)


class InMemoryQueue(JobQueue):
    """
    In-memory job queue implementation.

    Stores jobs in memory dictionaries - data is lost on restart, which is
    acceptable because stuck recovery re-derives pending work from the
    database.
    """

    def __init__(
        self,
        name: str = "default",
        backoff_base_seconds: float = 30.0,
        backoff_max_seconds: float = 3600.0,
    ):
        """
        Args:
            name: Queue name used in logs and metrics
            backoff_base_seconds: Delay before the first retry; doubles per attempt
            backoff_max_seconds: Upper bound for any single retry delay
        """
        self.name = name
        self._jobs: dict[str, QueuedJob] = {}
        self._pending_queue: asyncio.Queue = asyncio.Queue()
        self._processing: set[str] = set()
        self._completed: set[str] = set()
        self._failed: set[str] = set()
        self._dead_letter: dict[str, QueuedJob] = {}
        self._processing_times: list[float] = []
        self._lock = asyncio.Lock()
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds

    def retry_delay(self, retry_count: int) -> float:
        """Exponential backoff: base, 2*base, 4*base, ... capped."""
        return min(self._backoff_base * (2 ** max(retry_count - 1, 0)), self._backoff_max)

    async def enqueue(self, job: QueuedJob) -> str:
        async with self._lock:
            if not job.id:
                job.id = str(uuid.uuid4())

            self._jobs[job.id] = job
            await self._pending_queue.put(job.id)

            return job.id

    async def dequeue(self) -> Optional[QueuedJob]:
        """
        Get next job to process.

        If the job is not due yet (retry delay), it is put back in the queue.
        """
        try:
            job_id = await asyncio.wait_for(
                self._pending_queue.get(),
                timeout=0.1
            )
        except asyncio.TimeoutError:
            return None

        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return None

            now = datetime.now(timezone.utc)
            if job.scheduled_at > now:
                await self._pending_queue.put(job_id)
                return None

            job.status = JobStatus.PROCESSING
            self._processing.add(job_id)

            return job

    async def complete(self, job_id: str) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return

            job.status = JobStatus.COMPLETED
            self._processing.discard(job_id)
            self._completed.add(job_id)

            processing_time = (
                datetime.now(timezone.utc) - job.created_at
            ).total_seconds() * 1000
            self._processing_times.append(processing_time)

            # Keep only last 1000 processing times
            if len(self._processing_times) > 1000:
                self._processing_times = self._processing_times[-1000:]

            # Completed jobs are not kept around
            self._jobs.pop(job_id, None)

    async def fail(self, job_id: str, error: str, retryable: bool = True) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return

            job.error = error
            job.retry_count += 1
            self._processing.discard(job_id)
            self._failed.add(job_id)

            if retryable and job.retry_count <= job.max_retries:
                job.scheduled_at = datetime.now(timezone.utc) + timedelta(
                    seconds=self.retry_delay(job.retry_count)
                )
                job.status = JobStatus.PENDING
                await self._pending_queue.put(job_id)
            else:
                job.status = JobStatus.DEAD_LETTER
                self._dead_letter[job_id] = job

    async def get_metrics(self) -> QueueMetrics:
        async with self._lock:
            total_jobs = len(self._completed) + len(self._failed)
            error_rate = (
                (len(self._failed) / total_jobs * 100)
                if total_jobs > 0
                else 0.0
            )

            avg_time = (
                sum(self._processing_times) / len(self._processing_times)
                if self._processing_times
                else 0.0
            )

            return QueueMetrics(
                pending=self._pending_queue.qsize(),
                processing=len(self._processing),
                completed=len(self._completed),
                failed=len(self._failed),
                dead_letter=len(self._dead_letter),
                avg_processing_time_ms=avg_time,
                error_rate=error_rate,
            )

    async def get_dead_letter_jobs(self, limit: int = 100) -> list[QueuedJob]:
        async with self._lock:
            return list(self._dead_letter.values())[:limit]

    async def retry_dead_letter(self, job_id: str) -> None:
        async with self._lock:
            job = self._dead_letter.pop(job_id, None)
            if not job:
                return

            job.retry_count = 0
            job.status = JobStatus.PENDING
            job.scheduled_at = datetime.now(timezone.utc)
            job.error = None

            await self._pending_queue.put(job_id)
