"""
Job Queue System

Provides async job processing for the feedback pipeline with:
- Abstract queue interface supporting multiple backends
- In-memory queue with exponential backoff and a dead letter store
- A worker per queue with bounded concurrency
- A dispatcher routing job types to their queues
"""

from src.message_queue.base import (
    JobQueue,
    JobEnqueuer,
    JobStatus,
    JobType,
    QueueName,
    QueuedJob,
    QueueMetrics,
    UnrecoverableJobError,
    JOB_QUEUES,
)
from src.message_queue.memory import InMemoryQueue
from src.message_queue.worker import QueueWorker
from src.message_queue.dispatcher import JobDispatcher

__all__ = [
    "JobQueue",
    "JobEnqueuer",
    "JobStatus",
    "JobType",
    "QueueName",
    "QueuedJob",
    "QueueMetrics",
    "UnrecoverableJobError",
    "JOB_QUEUES",
    "InMemoryQueue",
    "QueueWorker",
    "JobDispatcher",
]
