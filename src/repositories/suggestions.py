"""
Feedback Suggestion Repository
"""
import datetime as dt
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from src.models.feedback import FeedbackSuggestion, SuggestionStatus, SuggestionType
from src.repositories.base import BaseRepository, to_object_id
from src.utils.observability import logger

# Equality fields that identify a pending merge; backed by a partial unique index
_MERGE_KEY_FIELDS = ("raw_feedback_item_id", "target_post_id", "status", "suggestion_type")


class SuggestionRepository(BaseRepository[FeedbackSuggestion]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "feedback_suggestions", FeedbackSuggestion)

    async def insert_merge_if_absent(self, suggestion: FeedbackSuggestion) -> Optional[str]:
        """
        Insert a pending merge suggestion unless one already exists for the
        same (raw item, target post) pair.

        Returns:
            The new suggestion id, or None when a pending duplicate exists
        """
        now = dt.datetime.now(dt.UTC)
        suggestion.created_at = now
        suggestion.updated_at = now

        doc = self._to_document(suggestion)
        key = {field: doc.pop(field) for field in _MERGE_KEY_FIELDS}

        try:
            result = await self.collection.update_one(
                key,
                {"$setOnInsert": doc},
                upsert=True,
            )
        except DuplicateKeyError:
            # Lost an insert race against another worker
            logger.bind(**key).debug("Pending merge suggestion already exists")
            return None

        if result.upserted_id is None:
            return None

        suggestion.id = str(result.upserted_id)
        return suggestion.id

    async def resolve(
        self,
        suggestion_id: str,
        status: SuggestionStatus,
        resolver_identity_id: Optional[str],
        result_post_id: Optional[str] = None,
    ) -> Optional[FeedbackSuggestion]:
        """Conditional pending -> `status`. None if it was not pending anymore."""
        object_id = to_object_id(suggestion_id)
        if object_id is None:
            return None

        now = dt.datetime.now(dt.UTC)
        fields: Dict[str, Any] = {
            "status": status.value,
            "resolved_at": now,
            "resolved_by_identity_id": resolver_identity_id,
            "updated_at": now,
        }
        if result_post_id is not None:
            fields["result_post_id"] = result_post_id

        doc = await self.collection.find_one_and_update(
            {"_id": object_id, "status": SuggestionStatus.PENDING.value},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return self._to_model(doc)

    async def expire_created_before(self, cutoff: dt.datetime) -> int:
        now = dt.datetime.now(dt.UTC)
        result = await self.collection.update_many(
            {"status": SuggestionStatus.PENDING.value, "created_at": {"$lt": cutoff}},
            {"$set": {"status": SuggestionStatus.EXPIRED.value, "resolved_at": now, "updated_at": now}},
        )
        return result.modified_count

    async def find_pending(
        self,
        suggestion_type: Optional[SuggestionType] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> List[FeedbackSuggestion]:
        query: Dict[str, Any] = {"status": SuggestionStatus.PENDING.value}
        if suggestion_type:
            query["suggestion_type"] = suggestion_type.value
        return await self.find_many(query, limit=limit, skip=skip, sort=[("created_at", -1)])

    async def find_by_item(self, item_id: str) -> List[FeedbackSuggestion]:
        return await self.find_many({"raw_feedback_item_id": item_id}, limit=1000)

    async def count_pending_by_type(self) -> Dict[str, int]:
        counts = await self.count_by("suggestion_type", {"status": SuggestionStatus.PENDING.value})
        return {t.value: counts.get(t.value, 0) for t in SuggestionType}
