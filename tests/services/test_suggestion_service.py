"""Tests for suggestion resolution: votes, posts, subscriptions and attribution."""
import datetime as dt
import pytest

from src.models.feedback import FeedbackSuggestion, RawItemState, SuggestionStatus, SuggestionType
from src.models.post import Board, FeedbackPost
from src.services.ingestion_service import post_external_id
from src.services.suggestion_service import (
    UNTITLED_POST,
    InvalidSuggestionStateError,
    SuggestionEdits,
    SuggestionNotFoundError,
    SuggestionValidationError,
)


@pytest.fixture
async def board(stack):
    return await stack.boards.create(Board(name="Reporting", slug="reporting"))


@pytest.fixture
async def target(stack, board):
    return await stack.posts.create(FeedbackPost(title="Export to CSV", board_id=board.id, vote_count=4))


@pytest.fixture
async def dana(stack):
    return await stack.identities.get_or_create("dana@example.com", "Dana")


@pytest.fixture
async def reviewer(stack):
    return await stack.identities.get_or_create("pm@example.com", "Priya")


@pytest.fixture
def persisted_item(stack, make_raw_item):
    async def factory(external_id="conv_1", **fields):
        return await stack.raw_items.create(
            make_raw_item(external_id=external_id, state=RawItemState.COMPLETED, **fields)
        )

    return factory


async def merge_suggestion(stack, item, target_post_id):
    return await stack.suggestion_service.create_merge_suggestion(
        item, None, target_post_id=target_post_id, similarity_score=0.92, reasoning="close match"
    )


async def create_suggestion(stack, item, board_id, title="CSV export", body="Finance needs CSV"):
    return await stack.suggestion_service.create_post_suggestion(
        item, None, title=title, body=body, board_id=board_id, reasoning="new idea", embedding=[1.0, 0.0]
    )


class TestAcceptMerge:

    async def test_external_merge_votes_subscribes_and_attributes(
        self, stack, target, dana, reviewer, persisted_item, attribution_notifier
    ):
        item = await persisted_item(identity_id=dana.id)
        suggestion_id = await merge_suggestion(stack, item, target.id)

        resolved = await stack.suggestion_service.accept_merge_suggestion(suggestion_id, reviewer.id)

        assert resolved.status == SuggestionStatus.ACCEPTED
        assert resolved.result_post_id == target.id
        assert resolved.resolved_by_identity_id == reviewer.id
        assert (await stack.posts.find_by_id(target.id)).vote_count == 5
        assert await stack.votes.count({"post_id": target.id, "identity_id": dana.id}) == 1
        assert await stack.subscriptions.count({"post_id": target.id, "identity_id": dana.id}) == 1

        notice = attribution_notifier.notify.await_args.args[0]
        assert notice.email == "dana@example.com"
        assert notice.post_title == "Export to CSV"
        assert notice.resolver_name == "Priya"

    async def test_votes_at_most_once_per_identity(self, stack, target, dana, reviewer, persisted_item):
        first = await persisted_item("conv_1", identity_id=dana.id)
        second = await persisted_item("conv_2", identity_id=dana.id)
        for item in (first, second):
            suggestion_id = await merge_suggestion(stack, item, target.id)
            await stack.suggestion_service.accept_merge_suggestion(suggestion_id, reviewer.id)

        assert (await stack.posts.find_by_id(target.id)).vote_count == 5
        assert await stack.votes.count({"post_id": target.id}) == 1

    async def test_anonymous_merge_changes_no_votes(self, stack, target, reviewer, persisted_item, attribution_notifier):
        item = await persisted_item()
        suggestion_id = await merge_suggestion(stack, item, target.id)

        await stack.suggestion_service.accept_merge_suggestion(suggestion_id, reviewer.id)

        assert (await stack.posts.find_by_id(target.id)).vote_count == 4
        attribution_notifier.notify.assert_not_called()

    async def test_internal_merge_links_source_post(self, stack, board, target, dana, reviewer, persisted_item):
        source = await stack.posts.create(FeedbackPost(title="CSV download", board_id=board.id))
        item = await persisted_item(post_external_id(source.id), source_type="product", identity_id=dana.id)
        suggestion_id = await merge_suggestion(stack, item, target.id)

        await stack.suggestion_service.accept_merge_suggestion(suggestion_id, reviewer.id)

        merged = await stack.posts.find_by_id(source.id)
        assert merged.canonical_post_id == target.id
        assert merged.merged_by_identity_id == reviewer.id
        assert (await stack.posts.find_by_id(target.id)).vote_count == 4

    async def test_missing_target_is_rejected(self, stack, reviewer, persisted_item):
        item = await persisted_item()
        suggestion_id = await merge_suggestion(stack, item, "64b7f0c2e4b0a1a2b3c4d5e6")

        with pytest.raises(SuggestionValidationError):
            await stack.suggestion_service.accept_merge_suggestion(suggestion_id, reviewer.id)

        assert (await stack.suggestions.find_by_id(suggestion_id)).status == SuggestionStatus.PENDING

    async def test_resolved_suggestion_cannot_be_accepted(self, stack, target, reviewer, persisted_item):
        item = await persisted_item()
        suggestion_id = await merge_suggestion(stack, item, target.id)
        await stack.suggestion_service.accept_merge_suggestion(suggestion_id, reviewer.id)

        with pytest.raises(InvalidSuggestionStateError):
            await stack.suggestion_service.accept_merge_suggestion(suggestion_id, reviewer.id)

    async def test_wrong_type_and_unknown_id(self, stack, board, reviewer, persisted_item):
        item = await persisted_item()
        suggestion_id = await create_suggestion(stack, item, board.id)

        with pytest.raises(InvalidSuggestionStateError):
            await stack.suggestion_service.accept_merge_suggestion(suggestion_id, reviewer.id)
        with pytest.raises(SuggestionNotFoundError):
            await stack.suggestion_service.accept_merge_suggestion("64b7f0c2e4b0a1a2b3c4d5e6", reviewer.id)


class TestAcceptCreate:

    async def test_creates_post_with_author_vote(self, stack, board, dana, reviewer, persisted_item, attribution_notifier):
        item = await persisted_item(identity_id=dana.id)
        suggestion_id = await create_suggestion(stack, item, board.id)

        resolved = await stack.suggestion_service.accept_create_suggestion(suggestion_id, reviewer.id)

        post = await stack.posts.find_by_id(resolved.result_post_id)
        assert post.title == "CSV export"
        assert post.body == "Finance needs CSV"
        assert post.board_id == board.id
        assert post.author_identity_id == dana.id
        assert post.vote_count == 1
        assert post.embedding == [1.0, 0.0]
        assert await stack.votes.count({"post_id": post.id, "identity_id": dana.id}) == 1
        assert await stack.subscriptions.count({"post_id": post.id, "reason": "feedback_created"}) == 1
        attribution_notifier.notify.assert_awaited_once()

    async def test_edits_override_suggestion(self, stack, board, reviewer, persisted_item):
        other = await stack.boards.create(Board(name="Integrations", slug="integrations"))
        item = await persisted_item()
        suggestion_id = await create_suggestion(stack, item, board.id)

        resolved = await stack.suggestion_service.accept_create_suggestion(
            suggestion_id, reviewer.id, SuggestionEdits(title="Scheduled CSV reports", body="", board_id=other.id)
        )

        post = await stack.posts.find_by_id(resolved.result_post_id)
        assert post.title == "Scheduled CSV reports"
        assert post.body == ""
        assert post.board_id == other.id

    async def test_resolver_is_author_for_anonymous_items(self, stack, board, reviewer, persisted_item, attribution_notifier):
        item = await persisted_item()
        suggestion_id = await create_suggestion(stack, item, board.id)

        resolved = await stack.suggestion_service.accept_create_suggestion(suggestion_id, reviewer.id)

        post = await stack.posts.find_by_id(resolved.result_post_id)
        assert post.author_identity_id == reviewer.id
        attribution_notifier.notify.assert_not_called()

    async def test_blank_title_falls_back(self, stack, board, reviewer, persisted_item):
        item = await persisted_item()
        suggestion_id = await create_suggestion(stack, item, board.id, title="   ")

        resolved = await stack.suggestion_service.accept_create_suggestion(suggestion_id, reviewer.id)

        assert (await stack.posts.find_by_id(resolved.result_post_id)).title == UNTITLED_POST

    async def test_board_is_required(self, stack, reviewer, persisted_item):
        item = await persisted_item()
        no_board = await create_suggestion(stack, item, None)
        unknown_board = await create_suggestion(stack, item, "64b7f0c2e4b0a1a2b3c4d5e6")

        with pytest.raises(SuggestionValidationError):
            await stack.suggestion_service.accept_create_suggestion(no_board, reviewer.id)
        with pytest.raises(SuggestionValidationError):
            await stack.suggestion_service.accept_create_suggestion(unknown_board, reviewer.id)

        assert await stack.posts.count() == 0


class TestDismissAndExpire:

    async def test_dismiss_is_idempotent(self, stack, target, reviewer, persisted_item):
        item = await persisted_item()
        suggestion_id = await merge_suggestion(stack, item, target.id)

        assert await stack.suggestion_service.dismiss_suggestion(suggestion_id, reviewer.id) is True
        assert await stack.suggestion_service.dismiss_suggestion(suggestion_id, reviewer.id) is False
        assert (await stack.suggestions.find_by_id(suggestion_id)).status == SuggestionStatus.DISMISSED

    async def test_dismiss_unknown(self, stack, reviewer):
        with pytest.raises(SuggestionNotFoundError):
            await stack.suggestion_service.dismiss_suggestion("64b7f0c2e4b0a1a2b3c4d5e6", reviewer.id)

    async def test_expire_only_old_pending(self, stack, board, persisted_item):
        item = await persisted_item()
        stale = await create_suggestion(stack, item, board.id)
        fresh = await create_suggestion(stack, item, board.id)
        await stack.suggestions.update_fields(stale, {"created_at": dt.datetime.now(dt.UTC) - dt.timedelta(days=31)})

        expired = await stack.suggestion_service.expire_stale_suggestions()

        assert expired == 1
        assert (await stack.suggestions.find_by_id(stale)).status == SuggestionStatus.EXPIRED
        assert (await stack.suggestions.find_by_id(fresh)).status == SuggestionStatus.PENDING


class TestQueries:

    async def test_list_pending_and_stats(self, stack, board, target, persisted_item):
        item = await persisted_item()
        await merge_suggestion(stack, item, target.id)
        await create_suggestion(stack, item, board.id)
        dismissed = await create_suggestion(stack, item, board.id)
        await stack.suggestions.resolve(dismissed, SuggestionStatus.DISMISSED, None)

        merges = await stack.suggestion_service.list_pending(SuggestionType.MERGE_POST)
        everything = await stack.suggestion_service.list_pending()

        assert [s.suggestion_type for s in merges] == ["merge_post"]
        assert len(everything) == 2
        assert await stack.suggestion_service.suggestion_stats() == {"merge_post": 1, "create_post": 1, "total": 2}

    async def test_suggestion_model_defaults(self):
        suggestion = FeedbackSuggestion(suggestion_type=SuggestionType.CREATE_POST, raw_feedback_item_id="i1")

        assert suggestion.status == "pending"
        assert suggestion.reasoning == ""
