"""Tests for interpretation and the raw item fan-in."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from src.message_queue.base import UnrecoverableJobError
from src.models.feedback import FeedbackSignal, RawItemState, SignalState
from src.models.llm_responses import SuggestionDraft
from src.models.post import Board, FeedbackPost
from src.services.embedding_service import EmbeddingService
from src.services.ingestion_service import post_external_id
from src.services.interpretation_service import (
    FAILED_SIGNALS_ERROR,
    InterpretationService,
    fallback_draft,
)
from src.utils.llm_client import LLMCriticalError

CSV = [1.0, 0.0, 0.0, 0.0]
DARK = [0.0, 1.0, 0.0, 0.0]


def signal_for(item_id: str, summary: str, **fields) -> FeedbackSignal:
    return FeedbackSignal(
        raw_feedback_item_id=item_id,
        signal_type=fields.pop("signal_type", "feature_request"),
        summary=summary,
        extraction_confidence=0.9,
        extraction_model="gpt-4o",
        extraction_prompt_version="extraction-v1",
        **fields,
    )


@pytest.fixture
def embedding_client(embedding_client_factory):
    return embedding_client_factory({"csv": CSV, "dark": DARK})


@pytest.fixture
def service(stack, embedding_client):
    embeddings = EmbeddingService(embedding_client, stack.signals, stack.posts)
    return InterpretationService(
        stack.raw_items,
        stack.signals,
        stack.suggestion_service,
        embeddings,
        stack.posts,
        stack.boards,
        agent=None,
    )


@pytest.fixture
async def board(stack):
    return await stack.boards.create(Board(name="Reporting", slug="reporting"))


@pytest.fixture
def interpreting_item(stack, make_raw_item):
    """Persist an item in `interpreting` with one pending signal per summary."""

    async def factory(summaries, **item_fields):
        item = await stack.raw_items.create(make_raw_item(state=RawItemState.INTERPRETING, **item_fields))
        signals = await stack.signals.replace_for_item(item.id, [signal_for(item.id, s) for s in summaries])
        return item, signals

    return factory


class TestFallbackDraft:

    def test_body_quotes_evidence(self):
        signal = signal_for("i1", "CSV export", implicit_need="Share numbers with finance", evidence=["need CSV", "weekly"])
        boards = [Board(id="b1", name="Reporting", slug="reporting")]

        draft = fallback_draft(signal, boards)

        assert draft.title == "CSV export"
        assert draft.body == "Share numbers with finance\n\n> need CSV\n> weekly"
        assert draft.board_id == "b1"
        assert draft.reasoning == "Auto-generated from feature_request signal"

    def test_minimal_signal(self):
        draft = fallback_draft(signal_for("i1", "x" * 150, signal_type="bug_report"), [])

        assert len(draft.title) == 100
        assert draft.body == "x" * 150
        assert draft.board_id is None
        assert draft.reasoning == "Auto-generated from bug_report signal"


class TestFanIn:

    @pytest.mark.parametrize("order", [(0, 1, 2), (2, 0, 1), (1, 2, 0)])
    async def test_item_completes_exactly_once(self, service, stack, board, interpreting_item, order):
        item, signals = await interpreting_item(["CSV export", "Dark mode", "Faster dashboards"])

        transitions = []
        check = service.check_raw_item_completion

        async def recording_check(item_id):
            result = await check(item_id)
            if result is not None:
                transitions.append(result)
            return result

        service.check_raw_item_completion = recording_check

        for position, index in enumerate(order):
            await service.interpret_signal(signals[index].id)
            state = (await stack.raw_items.find_by_id(item.id)).processing_state
            if position < len(order) - 1:
                assert state == RawItemState.INTERPRETING

        stored = await stack.raw_items.find_by_id(item.id)
        assert stored.processing_state == RawItemState.COMPLETED
        assert stored.processed_at is not None
        assert transitions == [RawItemState.COMPLETED]
        assert await service.check_raw_item_completion(item.id) is None

    async def test_failed_signal_fails_item(self, service, stack, board, interpreting_item):
        item, signals = await interpreting_item(["CSV export", "boom"])
        embed_signal = service.embeddings.embed_signal

        async def flaky(signal):
            if signal.summary == "boom":
                raise LLMCriticalError("No embedding provider configured")
            return await embed_signal(signal)

        service.embeddings.embed_signal = flaky

        with pytest.raises(UnrecoverableJobError):
            await service.interpret_signal(signals[1].id)
        assert (await stack.raw_items.find_by_id(item.id)).processing_state == RawItemState.INTERPRETING

        await service.interpret_signal(signals[0].id)

        failed_signal = await stack.signals.find_by_id(signals[1].id)
        assert failed_signal.processing_state == SignalState.FAILED
        assert failed_signal.last_error.startswith("LLMCriticalError")

        stored = await stack.raw_items.find_by_id(item.id)
        assert stored.processing_state == RawItemState.FAILED
        assert stored.last_error == FAILED_SIGNALS_ERROR

    async def test_completion_ignores_items_without_signals(self, service, stack, make_raw_item):
        item = await stack.raw_items.create(make_raw_item(state=RawItemState.INTERPRETING))

        assert await service.check_raw_item_completion(item.id) is None


class TestInterpretSignal:

    async def test_missing_signal_is_unrecoverable(self, service):
        with pytest.raises(UnrecoverableJobError):
            await service.interpret_signal("64b7f0c2e4b0a1a2b3c4d5e6")

    async def test_terminal_signal_is_noop(self, service, stack, interpreting_item):
        item, [signal] = await interpreting_item(["CSV export"])
        await stack.signals.transition(signal.id, [SignalState.PENDING_INTERPRETATION], SignalState.COMPLETED)

        await service.interpret_signal(signal.id)

        assert await stack.suggestions.count() == 0

    async def test_signal_embedding_is_stored(self, service, stack, board, interpreting_item):
        _, [signal] = await interpreting_item(["CSV export"])

        await service.interpret_signal(signal.id)

        stored = await stack.signals.find_by_id(signal.id)
        assert stored.embedding == CSV
        assert stored.embedding_model == "text-embedding-3-small"
        assert stored.processing_state == SignalState.COMPLETED


class TestExternalInterpretation:

    async def test_match_creates_merge_suggestion(self, service, stack, board, interpreting_item):
        post = await stack.posts.create(FeedbackPost(title="Export to CSV", board_id=board.id, embedding=CSV))
        item, [signal] = await interpreting_item(["Need CSV export"])

        await service.interpret_signal(signal.id)

        [suggestion] = await stack.suggestions.find_by_item(item.id)
        assert suggestion.suggestion_type == "merge_post"
        assert suggestion.target_post_id == post.id
        assert suggestion.signal_id == signal.id
        assert suggestion.similarity_score == pytest.approx(1.0)
        assert suggestion.reasoning == 'Signal "Need CSV export" matches post "Export to CSV" with 100% similarity'

    async def test_merge_is_not_duplicated_on_rerun(self, service, stack, board, interpreting_item):
        await stack.posts.create(FeedbackPost(title="Export to CSV", board_id=board.id, embedding=CSV))
        item, [signal] = await interpreting_item(["Need CSV export"])

        await service.interpret_signal(signal.id)
        await stack.signals.transition(signal.id, [SignalState.COMPLETED], SignalState.PENDING_INTERPRETATION)
        await service.interpret_signal(signal.id)

        assert len(await stack.suggestions.find_by_item(item.id)) == 1

    async def test_no_match_creates_post_suggestion(self, service, stack, board, interpreting_item):
        await stack.posts.create(FeedbackPost(title="Dark mode", board_id=board.id, embedding=DARK))
        item, [signal] = await interpreting_item(["Need CSV export"])

        await service.interpret_signal(signal.id)

        [suggestion] = await stack.suggestions.find_by_item(item.id)
        assert suggestion.suggestion_type == "create_post"
        assert suggestion.suggested_title == "Need CSV export"
        assert suggestion.board_id == board.id
        assert suggestion.embedding == CSV

    async def test_agent_draft_with_unknown_board_falls_back_to_first(self, stack, board, interpreting_item, embedding_client):
        agent = MagicMock()
        agent.draft = AsyncMock(return_value=SuggestionDraft(
            title="CSV export for reports", body="Finance needs CSV", board_id="board-that-does-not-exist",
            reasoning="Clear feature request",
        ))
        service = InterpretationService(
            stack.raw_items, stack.signals, stack.suggestion_service,
            EmbeddingService(embedding_client, stack.signals, stack.posts),
            stack.posts, stack.boards, agent=agent,
        )
        item, [signal] = await interpreting_item(["Need CSV export"])

        await service.interpret_signal(signal.id)

        [suggestion] = await stack.suggestions.find_by_item(item.id)
        assert suggestion.suggested_title == "CSV export for reports"
        assert suggestion.reasoning == "Clear feature request"
        assert suggestion.board_id == board.id

    async def test_agent_failure_uses_fallback_draft(self, stack, board, interpreting_item, embedding_client):
        agent = MagicMock()
        agent.draft = AsyncMock(side_effect=RuntimeError("model down"))
        service = InterpretationService(
            stack.raw_items, stack.signals, stack.suggestion_service,
            EmbeddingService(embedding_client, stack.signals, stack.posts),
            stack.posts, stack.boards, agent=agent,
        )
        item, [signal] = await interpreting_item(["Need CSV export"])

        await service.interpret_signal(signal.id)

        [suggestion] = await stack.suggestions.find_by_item(item.id)
        assert suggestion.reasoning == "Auto-generated from feature_request signal"
        assert (await stack.signals.find_by_id(signal.id)).processing_state == SignalState.COMPLETED


class TestInternalInterpretation:

    async def test_post_to_post_merge_excludes_source(self, service, stack, board, interpreting_item):
        source = await stack.posts.create(FeedbackPost(title="Spreadsheet export", board_id=board.id, embedding=[0.9, 0.1, 0.0, 0.0]))
        target = await stack.posts.create(FeedbackPost(title="Export to CSV", board_id=board.id, embedding=CSV))
        item, [signal] = await interpreting_item(
            ["Dark mode please"], source_type="product", external_id=post_external_id(source.id)
        )

        await service.interpret_signal(signal.id)

        [suggestion] = await stack.suggestions.find_by_item(item.id)
        assert suggestion.suggestion_type == "merge_post"
        assert suggestion.target_post_id == target.id
        assert suggestion.reasoning == 'Post "Spreadsheet export" looks like a duplicate of "Export to CSV" (99% similarity)'

    async def test_source_post_without_vector_is_embedded(self, service, stack, board, interpreting_item):
        source = await stack.posts.create(FeedbackPost(title="CSV download", board_id=board.id))
        await stack.posts.create(FeedbackPost(title="Export to CSV", board_id=board.id, embedding=CSV))
        item, [signal] = await interpreting_item(
            ["Dark mode please"], source_type="product", external_id=post_external_id(source.id)
        )

        await service.interpret_signal(signal.id)

        assert (await stack.posts.find_by_id(source.id)).embedding == CSV
        assert len(await stack.suggestions.find_by_item(item.id)) == 1

    async def test_internal_without_match_creates_nothing(self, service, stack, board, interpreting_item):
        source = await stack.posts.create(FeedbackPost(title="Dark mode", board_id=board.id, embedding=DARK))
        await stack.posts.create(FeedbackPost(title="Export to CSV", board_id=board.id, embedding=CSV))
        item, [signal] = await interpreting_item(
            ["Dark mode please"], source_type="product", external_id=post_external_id(source.id)
        )

        await service.interpret_signal(signal.id)

        assert await stack.suggestions.find_by_item(item.id) == []
        assert (await stack.raw_items.find_by_id(item.id)).processing_state == RawItemState.COMPLETED
