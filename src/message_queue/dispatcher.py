"""
Job Dispatcher

Routes each pipeline job type to the queue it runs on and stamps it with
that queue's attempt budget.
"""
from typing import Any, Dict

from loguru import logger

from src.message_queue.base import JOB_QUEUES, JobQueue, JobType, QueueName, QueuedJob


class JobDispatcher:
    """
    Implements JobEnqueuer on top of a set of named queues.

    Usage:
        dispatcher = JobDispatcher(
            queues={QueueName.AI: ai_queue, ...},
            max_retries={QueueName.AI: 3, ...},
        )
        await dispatcher.enqueue_job(JobType.EXTRACT_SIGNALS, {"item_id": item_id})
    """

    def __init__(self, queues: Dict[QueueName, JobQueue], max_retries: Dict[QueueName, int]):
        self.queues = queues
        self.max_retries = max_retries

    async def enqueue_job(self, job_type: JobType, payload: Dict[str, Any]) -> str:
        queue_name = JOB_QUEUES[JobType(job_type)]
        job = QueuedJob(
            job_type=job_type,
            payload=payload,
            max_retries=self.max_retries.get(queue_name, 3),
        )
        job_id = await self.queues[queue_name].enqueue(job)

        logger.bind(job_id=job_id, **payload).debug(
            f"Enqueued {JobType(job_type).value} on {queue_name.value}"
        )
        return job_id
