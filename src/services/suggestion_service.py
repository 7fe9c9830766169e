"""
Suggestion Service

Persists merge/create suggestions and applies their effects when a human
accepts, dismisses, or lets them expire.
"""
import datetime as dt
from typing import Dict, List, Optional

from pydantic import BaseModel

from src.config import get_settings
from src.models.feedback import (
    FeedbackSignal,
    FeedbackSuggestion,
    RawFeedbackItem,
    SourceKind,
    SuggestionStatus,
    SuggestionType,
)
from src.models.post import FeedbackPost
from src.repositories.posts import BoardRepository, PostRepository, VoteRepository
from src.repositories.raw_items import RawItemRepository
from src.repositories.suggestions import SuggestionRepository
from src.services.ingestion_service import parse_post_external_id
from src.services.notification_service import NotificationService
from src.utils.observability import logger, log_pipeline_event

UNTITLED_POST = "Untitled feedback"


class SuggestionError(Exception):
    """Base class for suggestion errors."""
    pass


class SuggestionNotFoundError(SuggestionError):
    pass


class InvalidSuggestionStateError(SuggestionError):
    """The suggestion is not pending, or not of the expected type."""
    pass


class SuggestionValidationError(SuggestionError):
    """The accept request cannot be applied (no board, target gone, ...)."""
    pass


class SuggestionEdits(BaseModel):
    """Reviewer overrides applied when accepting a create suggestion."""
    title: Optional[str] = None
    body: Optional[str] = None
    board_id: Optional[str] = None


class SuggestionService:

    def __init__(
        self,
        suggestions: SuggestionRepository,
        raw_items: RawItemRepository,
        posts: PostRepository,
        boards: BoardRepository,
        votes: VoteRepository,
        notifications: NotificationService,
    ):
        self.suggestions = suggestions
        self.raw_items = raw_items
        self.posts = posts
        self.boards = boards
        self.votes = votes
        self.notifications = notifications
        self.expiry_days = get_settings().suggestion_expiry_days

    # ============================================
    # CREATION
    # ============================================

    async def create_merge_suggestion(
        self,
        item: RawFeedbackItem,
        signal: Optional[FeedbackSignal],
        target_post_id: str,
        similarity_score: float,
        reasoning: str,
        embedding: Optional[List[float]] = None,
    ) -> Optional[str]:
        """
        Returns:
            The new suggestion id, or None if the same (item, target) pair
            already has a pending merge suggestion
        """
        suggestion_id = await self.suggestions.insert_merge_if_absent(FeedbackSuggestion(
            suggestion_type=SuggestionType.MERGE_POST,
            raw_feedback_item_id=item.id,
            signal_id=signal.id if signal else None,
            target_post_id=target_post_id,
            similarity_score=similarity_score,
            reasoning=reasoning,
            embedding=embedding,
        ))
        if suggestion_id:
            log_pipeline_event(
                "merge_suggested",
                suggestion_id=suggestion_id,
                item_id=item.id,
                target_post_id=target_post_id,
                similarity=round(similarity_score, 4),
            )
        return suggestion_id

    async def create_post_suggestion(
        self,
        item: RawFeedbackItem,
        signal: Optional[FeedbackSignal],
        title: str,
        body: str,
        board_id: Optional[str],
        reasoning: str,
        embedding: Optional[List[float]] = None,
    ) -> str:
        suggestion = await self.suggestions.create(FeedbackSuggestion(
            suggestion_type=SuggestionType.CREATE_POST,
            raw_feedback_item_id=item.id,
            signal_id=signal.id if signal else None,
            suggested_title=title,
            suggested_body=body,
            board_id=board_id,
            reasoning=reasoning,
            embedding=embedding,
        ))
        log_pipeline_event("create_suggested", suggestion_id=suggestion.id, item_id=item.id)
        return suggestion.id

    # ============================================
    # RESOLUTION
    # ============================================

    async def _get_pending(self, suggestion_id: str, expected_type: SuggestionType) -> FeedbackSuggestion:
        suggestion = await self.suggestions.find_by_id(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
        if suggestion.status != SuggestionStatus.PENDING:
            raise InvalidSuggestionStateError(
                f"Suggestion {suggestion_id} is {suggestion.status}, not pending"
            )
        if suggestion.suggestion_type != expected_type:
            raise InvalidSuggestionStateError(
                f"Suggestion {suggestion_id} is a {suggestion.suggestion_type} suggestion"
            )
        return suggestion

    async def _record_vote(self, post_id: str, identity_id: str) -> bool:
        """Vote once per (post, identity); the counter only moves on a new row."""
        inserted = await self.votes.insert_if_absent(post_id, identity_id)
        if inserted:
            await self.posts.increment_votes(post_id)
        return inserted

    async def _mark_accepted(
        self,
        suggestion_id: str,
        resolver_identity_id: str,
        result_post_id: str,
    ) -> FeedbackSuggestion:
        resolved = await self.suggestions.resolve(
            suggestion_id, SuggestionStatus.ACCEPTED, resolver_identity_id, result_post_id
        )
        if resolved is None:
            raise InvalidSuggestionStateError(f"Suggestion {suggestion_id} was resolved concurrently")
        return resolved

    async def accept_merge_suggestion(self, suggestion_id: str, resolver_identity_id: str) -> FeedbackSuggestion:
        suggestion = await self._get_pending(suggestion_id, SuggestionType.MERGE_POST)

        target = await self.posts.find_by_id(suggestion.target_post_id)
        if target is None:
            raise SuggestionValidationError(f"Target post {suggestion.target_post_id} no longer exists")

        item = await self.raw_items.find_by_id(suggestion.raw_feedback_item_id)
        author_id = item.identity_id if item else None

        if item is not None and item.source_kind == SourceKind.INTERNAL:
            source_post_id = parse_post_external_id(item.external_id)
            if source_post_id:
                await self.posts.mark_merged(source_post_id, target.id, resolver_identity_id)
        elif author_id:
            await self._record_vote(target.id, author_id)

        if author_id:
            await self.notifications.subscribe(author_id, target.id, "feedback_merged")
            await self.notifications.send_attribution(author_id, target.id, resolver_identity_id)

        resolved = await self._mark_accepted(suggestion_id, resolver_identity_id, target.id)
        log_pipeline_event(
            "merge_accepted",
            suggestion_id=suggestion_id,
            target_post_id=target.id,
            resolver=resolver_identity_id,
        )
        return resolved

    async def accept_create_suggestion(
        self,
        suggestion_id: str,
        resolver_identity_id: str,
        edits: Optional[SuggestionEdits] = None,
    ) -> FeedbackSuggestion:
        suggestion = await self._get_pending(suggestion_id, SuggestionType.CREATE_POST)
        edits = edits or SuggestionEdits()

        title = (edits.title or suggestion.suggested_title or "").strip() or UNTITLED_POST
        body = edits.body if edits.body is not None else (suggestion.suggested_body or "")
        board_id = edits.board_id or suggestion.board_id
        if not board_id:
            raise SuggestionValidationError("No board selected for the new post")
        if await self.boards.find_by_id(board_id) is None:
            raise SuggestionValidationError(f"Board {board_id} not found")

        item = await self.raw_items.find_by_id(suggestion.raw_feedback_item_id)
        author_id = (item.identity_id if item else None) or resolver_identity_id

        post = await self.posts.create(FeedbackPost(
            title=title,
            body=body,
            board_id=board_id,
            author_identity_id=author_id,
            vote_count=1,
            embedding=suggestion.embedding,
        ))
        await self.votes.insert_if_absent(post.id, author_id)
        await self.notifications.subscribe(author_id, post.id, "feedback_created")

        if author_id != resolver_identity_id:
            await self.notifications.send_attribution(author_id, post.id, resolver_identity_id)

        resolved = await self._mark_accepted(suggestion_id, resolver_identity_id, post.id)
        log_pipeline_event(
            "create_accepted",
            suggestion_id=suggestion_id,
            post_id=post.id,
            resolver=resolver_identity_id,
        )
        return resolved

    async def dismiss_suggestion(self, suggestion_id: str, resolver_identity_id: str) -> bool:
        """
        Returns:
            False when the suggestion was already resolved (no-op)
        """
        if await self.suggestions.find_by_id(suggestion_id) is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")

        resolved = await self.suggestions.resolve(
            suggestion_id, SuggestionStatus.DISMISSED, resolver_identity_id
        )
        if resolved is None:
            logger.debug(f"Suggestion {suggestion_id} already resolved, dismiss ignored")
            return False

        log_pipeline_event("suggestion_dismissed", suggestion_id=suggestion_id, resolver=resolver_identity_id)
        return True

    async def expire_stale_suggestions(self) -> int:
        cutoff = dt.datetime.now(dt.UTC) - dt.timedelta(days=self.expiry_days)
        expired = await self.suggestions.expire_created_before(cutoff)
        if expired:
            logger.bind(cutoff=cutoff.isoformat()).info(f"Expired {expired} stale suggestions")
        return expired

    # ============================================
    # QUERIES
    # ============================================

    async def list_pending(
        self,
        suggestion_type: Optional[SuggestionType] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> List[FeedbackSuggestion]:
        return await self.suggestions.find_pending(suggestion_type, limit=limit, skip=skip)

    async def suggestion_stats(self) -> Dict[str, int]:
        counts = await self.suggestions.count_pending_by_type()
        return {**counts, "total": sum(counts.values())}
