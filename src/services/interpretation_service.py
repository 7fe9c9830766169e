"""
Interpretation Service

Per signal: embed, search existing posts, and turn the result into merge or
create suggestions. Also owns the fan-in that rolls the parent raw item to a
terminal state once all of its signals are done.
"""
import datetime as dt
from typing import List, Optional

from src.agents.suggestion_agent import SuggestionAgent
from src.config import get_settings
from src.message_queue.base import UnrecoverableJobError
from src.models.feedback import (
    TERMINAL_SIGNAL_STATES,
    FeedbackSignal,
    RawFeedbackItem,
    RawItemState,
    SignalState,
    SourceKind,
)
from src.models.llm_responses import SuggestionDraft
from src.models.post import Board
from src.repositories.posts import BoardRepository, PostRepository
from src.repositories.raw_items import RawItemRepository
from src.repositories.signals import SignalRepository
from src.services.embedding_service import EmbeddingService, SimilarPost
from src.services.ingestion_service import parse_post_external_id
from src.services.suggestion_service import SuggestionService
from src.utils.circuit_breaker import CircuitBreaker, get_llm_circuit
from src.utils.observability import logger, log_pipeline_event

FAILED_SIGNALS_ERROR = "One or more signals failed interpretation"


def fallback_draft(signal: FeedbackSignal, boards: List[Board]) -> SuggestionDraft:
    """Deterministic create-post draft built from the signal alone."""
    if signal.implicit_need and signal.evidence:
        quotes = "\n".join(f"> {quote}" for quote in signal.evidence)
        body = f"{signal.implicit_need}\n\n{quotes}"
    else:
        body = signal.implicit_need or signal.summary

    return SuggestionDraft(
        title=signal.summary[:100],
        body=body,
        board_id=boards[0].id if boards else None,
        reasoning=f"Auto-generated from {signal.signal_type} signal",
    )


class InterpretationService:
    """
    INTERNAL items (posts authored in the product) are compared post-to-post
    using the source post's own vector at the lower threshold. Everything
    else is compared signal-to-post at the higher threshold and falls back
    to a create suggestion when nothing matches.
    """

    def __init__(
        self,
        raw_items: RawItemRepository,
        signals: SignalRepository,
        suggestions: SuggestionService,
        embeddings: EmbeddingService,
        posts: PostRepository,
        boards: BoardRepository,
        agent: Optional[SuggestionAgent] = None,
        circuit: Optional[CircuitBreaker] = None,
    ):
        settings = get_settings()
        self.raw_items = raw_items
        self.signals = signals
        self.suggestions = suggestions
        self.embeddings = embeddings
        self.posts = posts
        self.boards = boards
        self.agent = agent
        self.circuit = circuit or get_llm_circuit()
        self.internal_threshold = settings.merge_threshold_internal
        self.external_threshold = settings.merge_threshold_external
        self.match_limit = settings.similar_posts_limit

    async def interpret_signal(self, signal_id: str) -> None:
        signal = await self.signals.find_by_id(signal_id)
        if signal is None:
            raise UnrecoverableJobError(f"Signal {signal_id} not found")

        if signal.processing_state != SignalState.PENDING_INTERPRETATION:
            logger.debug(f"Signal {signal_id} is {signal.processing_state}, skipping interpretation")
            return

        signal = await self.signals.transition(
            signal_id, [SignalState.PENDING_INTERPRETATION], SignalState.INTERPRETING
        )
        if signal is None:
            logger.debug(f"Signal {signal_id} claimed by another worker")
            return

        try:
            item = await self.raw_items.find_by_id(signal.raw_feedback_item_id)
            if item is None:
                raise UnrecoverableJobError(f"Raw feedback item {signal.raw_feedback_item_id} not found")

            vector = await self.embeddings.embed_signal(signal)

            if item.source_kind == SourceKind.INTERNAL:
                created = await self._interpret_internal(item, signal, vector)
            else:
                created = await self._interpret_external(item, signal, vector)

        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            await self.signals.transition(
                signal.id,
                [SignalState.INTERPRETING],
                SignalState.FAILED,
                set_fields={"last_error": message},
            )
            logger.bind(signal_id=signal.id, item_id=signal.raw_feedback_item_id).error(
                f"❌ Interpretation failed for signal {signal.id}: {message}"
            )
            await self.check_raw_item_completion(signal.raw_feedback_item_id)
            raise UnrecoverableJobError(message) from e

        await self.signals.transition(
            signal.id,
            [SignalState.INTERPRETING],
            SignalState.COMPLETED,
            set_fields={"last_error": None},
        )
        log_pipeline_event(
            "signal_interpreted",
            signal_id=signal.id,
            item_id=item.id,
            source_kind=item.source_kind.value,
            suggestions=created,
        )
        await self.check_raw_item_completion(item.id)

    async def _interpret_internal(
        self,
        item: RawFeedbackItem,
        signal: FeedbackSignal,
        signal_vector: List[float],
    ) -> int:
        source_post_id = parse_post_external_id(item.external_id)
        source_post = await self.posts.find_by_id(source_post_id) if source_post_id else None

        vector = signal_vector
        if source_post is not None:
            vector = source_post.embedding or await self.embeddings.embed_post(source_post)
        else:
            logger.warning(f"Source post for item {item.id} not found, searching with the signal vector")

        matches = await self.embeddings.find_similar_posts(
            vector,
            threshold=self.internal_threshold,
            limit=self.match_limit,
            exclude_post_id=source_post_id,
        )

        created = 0
        for match in matches:
            source_title = source_post.title if source_post else signal.summary
            reasoning = (
                f'Post "{source_title}" looks like a duplicate of "{match.post.title}" '
                f"({match.similarity:.0%} similarity)"
            )
            if await self._suggest_merge(item, signal, match, reasoning, vector):
                created += 1
        return created

    async def _interpret_external(
        self,
        item: RawFeedbackItem,
        signal: FeedbackSignal,
        vector: List[float],
    ) -> int:
        matches = await self.embeddings.find_similar_posts(
            vector,
            threshold=self.external_threshold,
            limit=self.match_limit,
        )

        if matches:
            created = 0
            for match in matches:
                reasoning = (
                    f'Signal "{signal.summary}" matches post "{match.post.title}" '
                    f"with {match.similarity:.0%} similarity"
                )
                if await self._suggest_merge(item, signal, match, reasoning, vector):
                    created += 1
            return created

        boards = await self.boards.list_all()
        draft = await self._draft_post(signal, boards)
        await self.suggestions.create_post_suggestion(
            item,
            signal,
            title=draft.title,
            body=draft.body,
            board_id=draft.board_id,
            reasoning=draft.reasoning,
            embedding=vector,
        )
        return 1

    async def _suggest_merge(
        self,
        item: RawFeedbackItem,
        signal: FeedbackSignal,
        match: SimilarPost,
        reasoning: str,
        vector: List[float],
    ) -> bool:
        suggestion_id = await self.suggestions.create_merge_suggestion(
            item,
            signal,
            target_post_id=match.post.id,
            similarity_score=match.similarity,
            reasoning=reasoning,
            embedding=vector,
        )
        return suggestion_id is not None

    async def _draft_post(self, signal: FeedbackSignal, boards: List[Board]) -> SuggestionDraft:
        if self.agent is None:
            return fallback_draft(signal, boards)

        draft = await self.circuit.call_with_fallback(
            lambda: self.agent.draft(signal, boards),
            lambda: None,
        )
        if draft is None:
            return fallback_draft(signal, boards)

        board_ids = {b.id for b in boards}
        if draft.board_id not in board_ids:
            logger.bind(signal_id=signal.id).warning(
                f"Drafted board {draft.board_id!r} is not a known board, using the first board"
            )
            draft.board_id = boards[0].id if boards else None
        return draft

    async def check_raw_item_completion(self, item_id: str) -> Optional[RawItemState]:
        """
        Roll the parent item to completed/failed once every signal is terminal.

        Safe to call after every signal transition, in any order and any
        number of times: the item only moves out of `interpreting` once.

        Returns:
            The state the item was moved to, or None if nothing changed
        """
        signals = await self.signals.find_by_item(item_id)
        if not signals:
            return None
        if any(s.processing_state not in TERMINAL_SIGNAL_STATES for s in signals):
            return None

        any_failed = any(s.processing_state == SignalState.FAILED for s in signals)
        if any_failed:
            target = RawItemState.FAILED
            fields = {"last_error": FAILED_SIGNALS_ERROR}
        else:
            target = RawItemState.COMPLETED
            fields = {"last_error": None}

        moved = await self.raw_items.transition(
            item_id,
            [RawItemState.INTERPRETING],
            target,
            set_fields={**fields, "processed_at": dt.datetime.now(dt.UTC)},
        )
        if moved is None:
            return None

        log_pipeline_event("item_completed", item_id=item_id, state=target.value, signals=len(signals))
        return target
