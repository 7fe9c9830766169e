"""
Feedback Signal Repository
"""
import datetime as dt
from typing import Any, Dict, Iterable, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from src.models.feedback import FeedbackSignal, SignalState
from src.repositories.base import BaseRepository, to_object_id
from src.utils.observability import logger


class SignalRepository(BaseRepository[FeedbackSignal]):
    """Signals are only ever created in bulk, per raw item, by extraction."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "feedback_signals", FeedbackSignal)

    async def replace_for_item(self, item_id: str, signals: List[FeedbackSignal]) -> List[FeedbackSignal]:
        """
        Delete any previous extraction for the item, then insert `signals`.
        Re-running extraction therefore never double-counts.
        """
        deleted = await self.collection.delete_many({"raw_feedback_item_id": item_id})
        if deleted.deleted_count:
            logger.bind(raw_feedback_item_id=item_id).debug(
                f"Replaced {deleted.deleted_count} previous signals"
            )
        return await self.bulk_create(signals)

    async def find_by_item(self, item_id: str) -> List[FeedbackSignal]:
        return await self.find_many(
            {"raw_feedback_item_id": item_id},
            limit=1000,
            sort=[("created_at", 1)],
        )

    async def transition(
        self,
        signal_id: str,
        from_states: Iterable[SignalState],
        to_state: SignalState,
        set_fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[FeedbackSignal]:
        """Conditional state move; None when the signal is missing or not in `from_states`."""
        object_id = to_object_id(signal_id)
        if object_id is None:
            return None

        now = dt.datetime.now(dt.UTC)
        doc = await self.collection.find_one_and_update(
            {"_id": object_id, "processing_state": {"$in": [s.value for s in from_states]}},
            {"$set": {
                **(set_fields or {}),
                "processing_state": to_state.value,
                "state_changed_at": now,
                "updated_at": now,
            }},
            return_document=ReturnDocument.AFTER,
        )
        return self._to_model(doc)

    async def set_embedding(self, signal_id: str, embedding: List[float], model: str) -> bool:
        return await self.update_fields(signal_id, {
            "embedding": embedding,
            "embedding_model": model,
            "embedding_updated_at": dt.datetime.now(dt.UTC),
        })

    async def find_in_states_before(
        self,
        states: Iterable[SignalState],
        cutoff: dt.datetime,
        limit: int = 500,
    ) -> List[FeedbackSignal]:
        return await self.find_many(
            {
                "processing_state": {"$in": [s.value for s in states]},
                "state_changed_at": {"$lt": cutoff},
            },
            limit=limit,
            sort=[("state_changed_at", 1)],
        )

    async def count_by_state(self) -> Dict[str, int]:
        counts = await self.count_by("processing_state")
        return {state.value: counts.get(state.value, 0) for state in SignalState}
