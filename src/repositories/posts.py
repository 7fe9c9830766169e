"""
Post, Board, Vote and Subscription Repositories
The product-side collections that accepted suggestions write into.
"""
import datetime as dt
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from src.models.post import Board, FeedbackPost, PostSubscription, Vote
from src.repositories.base import BaseRepository, to_object_id


class PostRepository(BaseRepository[FeedbackPost]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "posts", FeedbackPost)

    async def find_search_candidates(
        self,
        exclude_post_id: Optional[str] = None,
        limit: int = 10000,
    ) -> List[FeedbackPost]:
        """Posts that carry an embedding and have not been merged away."""
        query: Dict[str, Any] = {
            "embedding": {"$ne": None},
            "canonical_post_id": None,
        }
        exclude_oid = to_object_id(exclude_post_id) if exclude_post_id else None
        if exclude_oid is not None:
            query["_id"] = {"$ne": exclude_oid}
        return await self.find_many(query, limit=limit)

    async def set_embedding(self, post_id: str, embedding: List[float]) -> bool:
        return await self.update_fields(post_id, {"embedding": embedding})

    async def mark_merged(self, post_id: str, canonical_post_id: str, merged_by: Optional[str]) -> bool:
        return await self.update_fields(post_id, {
            "canonical_post_id": canonical_post_id,
            "merged_at": dt.datetime.now(dt.UTC),
            "merged_by_identity_id": merged_by,
        })

    async def increment_votes(self, post_id: str, amount: int = 1) -> bool:
        object_id = to_object_id(post_id)
        if object_id is None:
            return False
        result = await self.collection.update_one(
            {"_id": object_id},
            {"$inc": {"vote_count": amount}, "$set": {"updated_at": dt.datetime.now(dt.UTC)}},
        )
        return result.matched_count > 0


class BoardRepository(BaseRepository[Board]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "boards", Board)

    async def list_all(self) -> List[Board]:
        return await self.find_many({}, limit=500, sort=[("created_at", 1)])


class VoteRepository(BaseRepository[Vote]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "votes", Vote)

    async def insert_if_absent(self, post_id: str, identity_id: str) -> bool:
        """
        Returns:
            True only when a new vote row was written
        """
        now = dt.datetime.now(dt.UTC)
        try:
            result = await self.collection.update_one(
                {"post_id": post_id, "identity_id": identity_id},
                {"$setOnInsert": {"created_at": now, "updated_at": now}},
                upsert=True,
            )
        except DuplicateKeyError:
            return False
        return result.upserted_id is not None


class SubscriptionRepository(BaseRepository[PostSubscription]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "post_subscriptions", PostSubscription)

    async def subscribe(self, post_id: str, identity_id: str, reason: str) -> bool:
        now = dt.datetime.now(dt.UTC)
        try:
            result = await self.collection.update_one(
                {"post_id": post_id, "identity_id": identity_id},
                {"$setOnInsert": {"reason": reason, "created_at": now, "updated_at": now}},
                upsert=True,
            )
        except DuplicateKeyError:
            return False
        return result.upserted_id is not None
