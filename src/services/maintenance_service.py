"""
Stuck-Recovery / Maintenance Service

The job queue is only a trigger. This sweep re-derives pending work from the
database state so a crashed worker or a lost job can never wedge an item.
"""
import datetime as dt
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from src.config import get_settings
from src.message_queue.base import JobEnqueuer, JobType
from src.models.feedback import RawItemState, SignalState
from src.repositories.raw_items import RawItemRepository
from src.repositories.signals import SignalRepository
from src.services.suggestion_service import SuggestionService
from src.utils.observability import logger, log_pipeline_event


class ItemNotFoundError(Exception):
    pass


@dataclass
class RecoveryReport:
    items_failed: List[str] = field(default_factory=list)
    items_restarted: List[str] = field(default_factory=list)
    signals_restarted: List[str] = field(default_factory=list)
    orphans_requeued: int = 0

    @property
    def total(self) -> int:
        return (
            len(self.items_failed)
            + len(self.items_restarted)
            + len(self.signals_restarted)
            + self.orphans_requeued
        )


class MaintenanceService:

    def __init__(
        self,
        raw_items: RawItemRepository,
        signals: SignalRepository,
        suggestions: SuggestionService,
        jobs: JobEnqueuer,
    ):
        settings = get_settings()
        self.raw_items = raw_items
        self.signals = signals
        self.suggestions = suggestions
        self.jobs = jobs
        self.stuck_timeout = dt.timedelta(minutes=settings.stuck_timeout_minutes)
        self.max_attempts = settings.max_extraction_attempts

    async def recover_stuck(self) -> RecoveryReport:
        cutoff = dt.datetime.now(dt.UTC) - self.stuck_timeout
        report = RecoveryReport()

        stuck_items = await self.raw_items.find_in_states_before(
            [RawItemState.EXTRACTING, RawItemState.INTERPRETING], cutoff
        )
        for item in stuck_items:
            if item.attempt_count >= self.max_attempts:
                moved = await self.raw_items.transition(
                    item.id,
                    [RawItemState(item.processing_state)],
                    RawItemState.FAILED,
                    set_fields={
                        "last_error": (
                            f"Stuck in {item.processing_state} after "
                            f"{item.attempt_count} attempts, giving up"
                        ),
                    },
                )
                if moved:
                    report.items_failed.append(item.id)
                continue

            moved = await self.raw_items.transition(
                item.id,
                [RawItemState(item.processing_state)],
                RawItemState.READY_FOR_EXTRACTION,
                set_fields={"last_error": f"Recovered from stuck {item.processing_state} state"},
            )
            if moved:
                await self.jobs.enqueue_job(JobType.EXTRACT_SIGNALS, {"item_id": item.id})
                report.items_restarted.append(item.id)

        stuck_signals = await self.signals.find_in_states_before([SignalState.INTERPRETING], cutoff)
        for signal in stuck_signals:
            moved = await self.signals.transition(
                signal.id,
                [SignalState.INTERPRETING],
                SignalState.PENDING_INTERPRETATION,
            )
            if moved:
                await self.jobs.enqueue_job(JobType.INTERPRET_SIGNAL, {"signal_id": signal.id})
                report.signals_restarted.append(signal.id)

        report.orphans_requeued = await self._requeue_orphans(cutoff)

        if report.total:
            logger.bind(**asdict(report)).warning(
                f"🛟 Stuck recovery: {len(report.items_restarted)} items restarted, "
                f"{len(report.items_failed)} failed, {len(report.signals_restarted)} signals restarted, "
                f"{report.orphans_requeued} orphans re-queued"
            )
        return report

    async def _requeue_orphans(self, cutoff: dt.datetime) -> int:
        """
        Re-enqueue work whose job was lost before a worker picked it up.

        Each orphan is claimed with a same-state transition first, which
        restarts its state_changed_at clock. A job still waiting behind a long
        backlog is therefore re-queued at most once per timeout window.
        """
        requeued = 0

        item_jobs = [
            (RawItemState.PENDING_CONTEXT, JobType.ENRICH_CONTEXT),
            (RawItemState.READY_FOR_EXTRACTION, JobType.EXTRACT_SIGNALS),
        ]
        for state, job_type in item_jobs:
            for item in await self.raw_items.find_in_states_before([state], cutoff):
                if await self.raw_items.transition(item.id, [state], state):
                    await self.jobs.enqueue_job(job_type, {"item_id": item.id})
                    requeued += 1

        pending = SignalState.PENDING_INTERPRETATION
        for signal in await self.signals.find_in_states_before([pending], cutoff):
            if await self.signals.transition(signal.id, [pending], pending):
                await self.jobs.enqueue_job(JobType.INTERPRET_SIGNAL, {"signal_id": signal.id})
                requeued += 1

        return requeued

    async def expire_stale_suggestions(self) -> int:
        return await self.suggestions.expire_stale_suggestions()

    async def retry_failed_item(self, item_id: str) -> bool:
        """
        Operator re-trigger for a failed item.

        Returns:
            False if the item exists but is not failed
        """
        item = await self.raw_items.find_by_id(item_id)
        if item is None:
            raise ItemNotFoundError(f"Raw feedback item {item_id} not found")

        moved = await self.raw_items.transition(
            item_id,
            [RawItemState.FAILED],
            RawItemState.READY_FOR_EXTRACTION,
            set_fields={"last_error": None, "attempt_count": 0, "processed_at": None},
        )
        if moved is None:
            return False

        await self.jobs.enqueue_job(JobType.EXTRACT_SIGNALS, {"item_id": item_id})
        log_pipeline_event("item_retried", item_id=item_id, previous_error=item.last_error)
        return True

    async def retry_all_failed(self, limit: int = 500) -> int:
        retried = 0
        for item in await self.raw_items.find_by_state(RawItemState.FAILED, limit=limit):
            if await self.retry_failed_item(item.id):
                retried += 1
        if retried:
            logger.info(f"🔁 Re-triggered {retried} failed items")
        return retried

    async def pipeline_stats(self) -> Dict[str, Any]:
        suggestions = await self.suggestions.suggestion_stats()
        return {
            "raw_items": await self.raw_items.count_by_state(),
            "signals": await self.signals.count_by_state(),
            "pending_suggestions": suggestions["total"],
        }
