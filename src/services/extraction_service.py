"""
Extraction Service

Calls the extraction model once per raw item and persists 0-5
confidence-scored signals, then fans out one interpretation job per signal.
"""
import datetime as dt
from typing import List, Optional

from src.agents.extraction_agent import ExtractionAgent
from src.config import get_settings
from src.message_queue.base import JobEnqueuer, JobType, UnrecoverableJobError
from src.models.feedback import FeedbackSignal, RawFeedbackItem, RawItemState, SignalState
from src.models.llm_responses import ExtractedSignal
from src.repositories.raw_items import RawItemRepository
from src.repositories.signals import SignalRepository
from src.services.quality_gate import QualityGate
from src.utils.llm_client import LLMCriticalError
from src.utils.observability import logger, log_pipeline_event


def select_signals(
    candidates: List[ExtractedSignal],
    min_confidence: float,
    max_signals: int,
) -> List[ExtractedSignal]:
    """Drop low-confidence candidates and keep the strongest `max_signals`."""
    kept = [c for c in candidates if c.confidence >= min_confidence]
    kept.sort(key=lambda c: c.confidence, reverse=True)
    return kept[:max_signals]


class ExtractionService:
    """
    State guard: only items in `ready_for_extraction` are processed, so late
    or duplicate job deliveries are no-ops.

    Failure policy:
    - malformed model output or a critical provider error: item `failed`,
      UnrecoverableJobError (no queue retry)
    - transient provider error with attempts left: item back to
      `ready_for_extraction` with `last_error`, error re-raised for queue retry
    - transient provider error on the last attempt: item `failed`
    """

    def __init__(
        self,
        raw_items: RawItemRepository,
        signals: SignalRepository,
        quality_gate: QualityGate,
        agent: Optional[ExtractionAgent],
        jobs: JobEnqueuer,
    ):
        settings = get_settings()
        self.raw_items = raw_items
        self.signals = signals
        self.quality_gate = quality_gate
        self.agent = agent
        self.jobs = jobs
        self.min_confidence = settings.min_signal_confidence
        self.max_signals = settings.max_signals_per_item
        self.max_attempts = settings.max_extraction_attempts

    async def extract_signals(self, item_id: str) -> None:
        item = await self.raw_items.find_by_id(item_id)
        if item is None:
            raise UnrecoverableJobError(f"Raw feedback item {item_id} not found")

        if item.processing_state != RawItemState.READY_FOR_EXTRACTION:
            logger.debug(f"Item {item_id} is {item.processing_state}, skipping extraction")
            return

        item = await self.raw_items.transition(
            item_id,
            [RawItemState.READY_FOR_EXTRACTION],
            RawItemState.EXTRACTING,
            inc_fields={"attempt_count": 1},
        )
        if item is None:
            logger.debug(f"Item {item_id} claimed by another worker")
            return

        try:
            await self._extract(item)
        except Exception as e:
            await self._handle_failure(item, e)

    async def _extract(self, item: RawFeedbackItem) -> None:
        gate = await self.quality_gate.should_extract(item)
        if not gate.extract:
            await self.raw_items.transition(
                item.id,
                [RawItemState.EXTRACTING],
                RawItemState.COMPLETED,
                set_fields={"processed_at": dt.datetime.now(dt.UTC), "last_error": None},
            )
            log_pipeline_event("item_skipped", item_id=item.id, reason=gate.reason)
            return

        if self.agent is None:
            raise LLMCriticalError("No extraction model configured")

        result, completion = await self.agent.extract(item)
        selected = select_signals(result.signals, self.min_confidence, self.max_signals)

        signals = [
            FeedbackSignal(
                raw_feedback_item_id=item.id,
                signal_type=candidate.signal_type,
                summary=candidate.summary,
                implicit_need=candidate.implicit_need,
                evidence=candidate.evidence,
                extraction_confidence=candidate.confidence,
                sentiment=candidate.sentiment,
                urgency=candidate.urgency,
                extraction_model=completion.model,
                extraction_prompt_version=self.agent.prompt_version,
                processing_state=SignalState.PENDING_INTERPRETATION,
            )
            for candidate in selected
        ]
        stored = await self.signals.replace_for_item(item.id, signals)

        usage = {
            "extraction_input_tokens": completion.input_tokens,
            "extraction_output_tokens": completion.output_tokens,
            "last_error": None,
        }

        if not stored:
            await self.raw_items.transition(
                item.id,
                [RawItemState.EXTRACTING],
                RawItemState.COMPLETED,
                set_fields={**usage, "processed_at": dt.datetime.now(dt.UTC)},
            )
            log_pipeline_event(
                "item_completed",
                item_id=item.id,
                signals=0,
                dropped=len(result.signals),
            )
            return

        moved = await self.raw_items.transition(
            item.id,
            [RawItemState.EXTRACTING],
            RawItemState.INTERPRETING,
            set_fields=usage,
        )
        if moved is None:
            # Stuck recovery reclaimed the item while the model was running
            logger.warning(f"Item {item.id} left extracting during the model call, not fanning out")
            return

        for signal in stored:
            await self.jobs.enqueue_job(JobType.INTERPRET_SIGNAL, {"signal_id": signal.id})

        log_pipeline_event(
            "signals_extracted",
            item_id=item.id,
            signals=len(stored),
            dropped=len(result.signals) - len(stored),
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )

    async def _handle_failure(self, item: RawFeedbackItem, error: Exception) -> None:
        message = f"{type(error).__name__}: {error}"
        permanent = isinstance(error, (LLMCriticalError, UnrecoverableJobError))
        exhausted = item.attempt_count >= self.max_attempts

        if permanent or exhausted:
            await self.raw_items.transition(
                item.id,
                [RawItemState.EXTRACTING],
                RawItemState.FAILED,
                set_fields={"last_error": message},
            )
            logger.bind(item_id=item.id, attempt=item.attempt_count).error(
                f"❌ Extraction failed permanently for item {item.id}: {message}"
            )
            raise UnrecoverableJobError(message) from error

        await self.raw_items.transition(
            item.id,
            [RawItemState.EXTRACTING],
            RawItemState.READY_FOR_EXTRACTION,
            set_fields={"last_error": message},
        )
        logger.bind(item_id=item.id, attempt=item.attempt_count).warning(
            f"⚠️ Extraction attempt {item.attempt_count}/{self.max_attempts} failed for item {item.id}: {message}"
        )
        raise error
