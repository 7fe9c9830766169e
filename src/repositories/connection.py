"""
MongoDB Connection Management
Singleton Motor client with connection pooling and lifecycle management.
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional
from ..config import settings
from ..utils.observability import logger


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """
    Create the indexes the pipeline's invariants rely on.
    Unique indexes here are what make concurrent workers safe.
    """
    # Idempotent ingestion: one row per external event per source
    await db.raw_feedback_items.create_index(
        [("source_id", 1), ("dedupe_key", 1)],
        unique=True,
        name="idx_source_dedupe_unique"
    )
    await db.raw_feedback_items.create_index(
        [("processing_state", 1), ("state_changed_at", 1)],
        name="idx_item_state_changed"
    )

    await db.feedback_signals.create_index("raw_feedback_item_id", name="idx_signal_item")
    await db.feedback_signals.create_index(
        [("processing_state", 1), ("state_changed_at", 1)],
        name="idx_signal_state_changed"
    )

    # At most one pending merge per (raw item, target post)
    await db.feedback_suggestions.create_index(
        [("raw_feedback_item_id", 1), ("target_post_id", 1)],
        unique=True,
        name="idx_pending_merge_unique",
        partialFilterExpression={"status": "pending", "suggestion_type": "merge_post"}
    )
    await db.feedback_suggestions.create_index(
        [("status", 1), ("created_at", 1)],
        name="idx_suggestion_status_created"
    )

    await db.identities.create_index("email", unique=True, name="idx_identity_email_unique")
    await db.external_user_mappings.create_index(
        [("source_type", 1), ("external_user_id", 1)],
        unique=True,
        name="idx_external_user_unique"
    )

    await db.votes.create_index(
        [("post_id", 1), ("identity_id", 1)],
        unique=True,
        name="idx_vote_unique"
    )
    await db.post_subscriptions.create_index(
        [("post_id", 1), ("identity_id", 1)],
        unique=True,
        name="idx_subscription_unique"
    )


class DatabaseManager:
    """
    Singleton MongoDB client manager with async Motor.
    Handles connection lifecycle, pooling, and graceful shutdown.
    """

    _instance: Optional["DatabaseManager"] = None
    _client: Optional[AsyncIOMotorClient] = None
    _database: Optional[AsyncIOMotorDatabase] = None

    def __new__(cls) -> "DatabaseManager":
        """Enforce singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def connect(self) -> None:
        """
        Initialize MongoDB connection with configured pool settings.
        Idempotent - safe to call multiple times.
        """
        if self._client:
            try:
                await self._client.admin.command("ping")
                logger.debug("Reusing healthy MongoDB connection")
                return
            except Exception:
                logger.warning("Event loop closed or connection lost. Rebuilding client...")
                self._client = None
                self._database = None

        logger.bind(
            database=settings.mongodb_database,
            max_pool_size=settings.mongodb_max_pool_size,
            environment=settings.environment,
        ).info(f"Connecting to MongoDB at {settings.mongodb_uri}")
        # tz_aware so stored UTC datetimes compare cleanly with dt.datetime.now(dt.UTC)
        self._client = AsyncIOMotorClient(
            settings.mongodb_uri,
            maxPoolSize=settings.mongodb_max_pool_size,
            minPoolSize=settings.mongodb_min_pool_size,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
            tz_aware=True,
        )

        self._database = self._client[settings.mongodb_database]

    async def disconnect(self) -> None:
        """
        Close MongoDB connection and cleanup resources.
        Idempotent - safe to call multiple times.
        """
        if self._client is None:
            logger.debug("MongoDB client already disconnected")
            return

        logger.info("Closing MongoDB connection")
        self._client.close()
        self._client = None
        self._database = None
        logger.info("MongoDB connection closed")

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """
        Get the database instance.
        Raises RuntimeError if not connected.
        """
        if self._database is None:
            raise RuntimeError(
                "Database not connected. Call await db_manager.connect() first."
            )
        return self._database

    @property
    def client(self) -> AsyncIOMotorClient:
        """
        Get the Motor client instance.
        Raises RuntimeError if not connected.
        """
        if self._client is None:
            raise RuntimeError(
                "Database client not connected. Call await db_manager.connect() first."
            )
        return self._client

    async def create_indexes(self) -> None:
        """
        Create all required indexes.
        Should be called during application startup.
        """
        logger.info("Creating MongoDB indexes")
        await ensure_indexes(self.database)
        logger.info("MongoDB indexes created successfully")


# Singleton instance
db_manager = DatabaseManager()


async def get_database() -> AsyncIOMotorDatabase:
    """
    Dependency injection helper for repositories.
    Returns the connected database instance.
    """
    return db_manager.database
