"""
Quality Gate

Tiered pre-filter bounding what gets sent to the (expensive) extraction model:

1. Hard skip: fewer than 5 words, no model call.
2. Auto-pass: high-intent source with at least 15 words, no model call.
3. Model gate: one cheap classifier call. No model configured falls back
   to the 15-word heuristic; any failure fails open.
"""
from dataclasses import dataclass
from typing import Optional

from src.agents.quality_gate_agent import QualityGateAgent
from src.config import get_settings
from src.models.feedback import RawFeedbackItem
from src.utils.circuit_breaker import CircuitBreaker, get_llm_circuit
from src.utils.observability import logger


@dataclass
class QualityGateResult:
    extract: bool
    reason: str


class QualityGate:

    def __init__(
        self,
        agent: Optional[QualityGateAgent] = None,
        circuit: Optional[CircuitBreaker] = None,
    ):
        settings = get_settings()
        self.agent = agent
        self.circuit = circuit or get_llm_circuit()
        self.min_words = settings.gate_min_words
        self.auto_pass_words = settings.gate_auto_pass_words
        self.thread_messages = settings.gate_thread_messages

    async def should_extract(self, item: RawFeedbackItem) -> QualityGateResult:
        word_count = item.content.word_count

        if word_count < self.min_words:
            return QualityGateResult(False, f"Too short ({word_count} words)")

        if item.source_kind.is_high_intent and word_count >= self.auto_pass_words:
            return QualityGateResult(True, f"High-intent source ({item.source_type})")

        if self.agent is None:
            if word_count >= self.auto_pass_words:
                return QualityGateResult(True, f"No classifier configured, {word_count} words")
            return QualityGateResult(False, f"No classifier configured, only {word_count} words")

        customer_messages = item.context_envelope.customer_messages(self.thread_messages)
        try:
            decision = await self.circuit.call(
                lambda: self.agent.decide(
                    item.source_type,
                    item.content.combined,
                    customer_messages,
                    item_id=item.id,
                )
            )
        except Exception as e:
            # Never silently drop real feedback because the classifier broke
            logger.bind(item_id=item.id).warning(
                f"Quality gate failed open for item {item.id}: {e}"
            )
            return QualityGateResult(True, f"Quality gate error, failing open: {e}")

        logger.bind(item_id=item.id, reason=decision.reason).debug(
            f"Quality gate decision for {item.id}: {decision.extract}"
        )
        return QualityGateResult(decision.extract, decision.reason)
