"""
Raw Feedback Item Repository
Persistence and guarded state transitions for ingested feedback.
"""
import datetime as dt
from typing import Any, Dict, Iterable, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from src.models.feedback import RawFeedbackItem, RawItemState
from src.repositories.base import BaseRepository, to_object_id


class RawItemRepository(BaseRepository[RawFeedbackItem]):
    """
    Raw items are never deleted. Every state change goes through
    `transition`, a single-document update conditioned on the current state.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "raw_feedback_items", RawFeedbackItem)

    async def find_by_dedupe_key(self, source_id: str, dedupe_key: str) -> Optional[RawFeedbackItem]:
        return await self.find_one({"source_id": source_id, "dedupe_key": dedupe_key})

    async def transition(
        self,
        item_id: str,
        from_states: Iterable[RawItemState],
        to_state: RawItemState,
        set_fields: Optional[Dict[str, Any]] = None,
        inc_fields: Optional[Dict[str, int]] = None,
    ) -> Optional[RawFeedbackItem]:
        """
        Move an item to `to_state` only if it is currently in one of `from_states`.

        Returns:
            The updated item, or None if the item is missing or another worker
            already moved it.
        """
        object_id = to_object_id(item_id)
        if object_id is None:
            return None

        now = dt.datetime.now(dt.UTC)
        update: Dict[str, Any] = {
            "$set": {
                **(set_fields or {}),
                "processing_state": to_state.value,
                "state_changed_at": now,
                "updated_at": now,
            }
        }
        if inc_fields:
            update["$inc"] = inc_fields

        doc = await self.collection.find_one_and_update(
            {"_id": object_id, "processing_state": {"$in": [s.value for s in from_states]}},
            update,
            return_document=ReturnDocument.AFTER,
        )
        return self._to_model(doc)

    async def find_in_states_before(
        self,
        states: Iterable[RawItemState],
        cutoff: dt.datetime,
        limit: int = 500,
    ) -> List[RawFeedbackItem]:
        """Items that have sat in one of `states` since before `cutoff`."""
        return await self.find_many(
            {
                "processing_state": {"$in": [s.value for s in states]},
                "state_changed_at": {"$lt": cutoff},
            },
            limit=limit,
            sort=[("state_changed_at", 1)],
        )

    async def find_by_state(self, state: RawItemState, limit: int = 100) -> List[RawFeedbackItem]:
        return await self.find_many(
            {"processing_state": state.value},
            limit=limit,
            sort=[("state_changed_at", 1)],
        )

    async def count_by_state(self) -> Dict[str, int]:
        counts = await self.count_by("processing_state")
        return {state.value: counts.get(state.value, 0) for state in RawItemState}
