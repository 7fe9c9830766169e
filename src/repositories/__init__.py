"""
Repositories Layer
Data persistence and query operations for the feedback pipeline.
"""
from .connection import db_manager, get_database, ensure_indexes, DatabaseManager
from .base import BaseRepository
from .raw_items import RawItemRepository
from .signals import SignalRepository
from .suggestions import SuggestionRepository
from .identities import IdentityRepository, ExternalUserMappingRepository
from .posts import PostRepository, BoardRepository, VoteRepository, SubscriptionRepository
from .sources import FeedbackSourceRepository

__all__ = [
    "db_manager",
    "get_database",
    "ensure_indexes",
    "DatabaseManager",
    "BaseRepository",
    "RawItemRepository",
    "SignalRepository",
    "SuggestionRepository",
    "IdentityRepository",
    "ExternalUserMappingRepository",
    "PostRepository",
    "BoardRepository",
    "VoteRepository",
    "SubscriptionRepository",
    "FeedbackSourceRepository",
]
