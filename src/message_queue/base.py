"""
Base Queue Interface

Abstract interface for pipeline job queues with retry logic and metrics.
The queue only triggers work: the database state is the system of record.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Protocol
from pydantic import BaseModel, Field, ConfigDict


class JobStatus(str, Enum):
    """Job processing status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class QueueName(str, Enum):
    INGESTION = "feedback-ingest"
    AI = "feedback-ai"
    MAINTENANCE = "feedback-maintenance"


class JobType(str, Enum):
    ENRICH_CONTEXT = "enrich-context"
    EXTRACT_SIGNALS = "extract-signals"
    INTERPRET_SIGNAL = "interpret-signal"
    RECOVER_STUCK = "recover-stuck"
    EXPIRE_SUGGESTIONS = "expire-suggestions"


# Which queue each job type runs on
JOB_QUEUES: Dict[JobType, QueueName] = {
    JobType.ENRICH_CONTEXT: QueueName.INGESTION,
    JobType.EXTRACT_SIGNALS: QueueName.AI,
    JobType.INTERPRET_SIGNAL: QueueName.AI,
    JobType.RECOVER_STUCK: QueueName.MAINTENANCE,
    JobType.EXPIRE_SUGGESTIONS: QueueName.MAINTENANCE,
}


class UnrecoverableJobError(Exception):
    """
    Raised by a handler when retrying cannot help (missing row, malformed
    model output). The job skips its remaining attempts.
    """
    pass


class QueuedJob(BaseModel):
    """
    Job in the queue.

    Attributes:
        id: Unique job identifier
        job_type: Which pipeline step to run
        payload: Step arguments (e.g. {"item_id": ...})
        status: Current processing status
        retry_count: Number of failed attempts so far
        max_retries: Retries allowed before dead letter
        created_at: Timestamp when job was queued
        scheduled_at: When to process (for retry delays)
        error: Last error message if failed
    """
    model_config = ConfigDict(use_enum_values=True)

    id: str = ""
    job_type: JobType
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    scheduled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None


class QueueMetrics(BaseModel):
    """
    Queue performance metrics.

    Attributes:
        pending: Number of jobs awaiting processing
        processing: Number of jobs currently being processed
        completed: Total successful jobs
        failed: Total failed attempts
        dead_letter: Jobs in dead letter queue
        avg_processing_time_ms: Average processing duration
        error_rate: Percentage of failed jobs
    """
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    dead_letter: int = 0
    avg_processing_time_ms: float = 0.0
    error_rate: float = 0.0


class JobEnqueuer(Protocol):
    """What pipeline services need from the job layer."""

    async def enqueue_job(self, job_type: JobType, payload: Dict[str, Any]) -> str:
        ...


class JobQueue(ABC):
    """
    Abstract job queue interface.

    Implementations must provide:
    - Enqueue: Add job to queue
    - Dequeue: Get next job to process
    - Complete: Mark job as successfully processed
    - Fail: Handle failed job with retry logic
    - Metrics: Get current queue statistics
    """

    @abstractmethod
    async def enqueue(self, job: QueuedJob) -> str:
        """
        Add job to queue.

        Returns:
            Job ID
        """
        pass

    @abstractmethod
    async def dequeue(self) -> Optional[QueuedJob]:
        """
        Get next job to process.

        Returns:
            Next job or None if nothing is ready
        """
        pass

    @abstractmethod
    async def complete(self, job_id: str) -> None:
        """Mark job as successfully processed."""
        pass

    @abstractmethod
    async def fail(self, job_id: str, error: str, retryable: bool = True) -> None:
        """
        Handle failed job.

        Retryable failures are rescheduled with exponential backoff until
        max_retries is exhausted; non-retryable ones go straight to the
        dead letter queue.

        Args:
            job_id: ID of failed job
            error: Error description
            retryable: False to skip remaining attempts
        """
        pass

    @abstractmethod
    async def get_metrics(self) -> QueueMetrics:
        pass

    @abstractmethod
    async def get_dead_letter_jobs(self, limit: int = 100) -> list[QueuedJob]:
        pass

    @abstractmethod
    async def retry_dead_letter(self, job_id: str) -> None:
        """Reset retry count and move a dead-lettered job back to pending."""
        pass
