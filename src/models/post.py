import datetime as dt
from typing import List, Optional
from src.models.base import MongoBaseModel


class Board(MongoBaseModel):
    """A collection posts are filed under."""
    name: str
    slug: str


class FeedbackPost(MongoBaseModel):
    """An existing feedback item that votes and merges accumulate on."""
    title: str
    body: str = ""
    board_id: str
    author_identity_id: Optional[str] = None
    vote_count: int = 0
    embedding: Optional[List[float]] = None

    # Set when this post was merged into another one
    canonical_post_id: Optional[str] = None
    merged_at: Optional[dt.datetime] = None
    merged_by_identity_id: Optional[str] = None


class Vote(MongoBaseModel):
    post_id: str
    identity_id: str


class PostSubscription(MongoBaseModel):
    post_id: str
    identity_id: str
    reason: str
