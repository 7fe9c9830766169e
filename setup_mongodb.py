"""
MongoDB Setup Script
Tests the connection and creates the indexes the feedback pipeline relies on.
Optionally seeds a first board so create suggestions have somewhere to go.
"""
import asyncio
import sys

from src.config import settings
from src.models.post import Board
from src.repositories import BoardRepository, db_manager

PIPELINE_COLLECTIONS = [
    "raw_feedback_items",
    "feedback_signals",
    "feedback_suggestions",
    "identities",
    "external_user_mappings",
    "votes",
    "post_subscriptions",
]


async def setup_mongodb(seed_board: str | None = None):
    """Create indexes and print what each pipeline collection ended up with."""
    print("🔄 Connecting to MongoDB...")
    print(f"   Database: {settings.mongodb_database}")
    print()

    try:
        await db_manager.connect()
        db = db_manager.database

        existing_collections = await db.list_collection_names()
        print(f"📦 Existing collections: {existing_collections or 'None'}")
        print()

        print("🔨 Creating indexes...")
        await db_manager.create_indexes()
        print("✅ Indexes created successfully!")
        print()

        print("📊 Verifying indexes:")
        total = 0
        for name in PIPELINE_COLLECTIONS:
            indexes = await db[name].index_information()
            total += len(indexes)
            print(f"   {name}: {', '.join(indexes)}")
        print()

        if seed_board:
            boards = BoardRepository(db)
            if await boards.count() == 0:
                board = await boards.create(Board(name=seed_board, slug=seed_board.lower().replace(" ", "-")))
                print(f"🗂️  Seeded board '{board.name}' ({board.id})")
            else:
                print("🗂️  Boards already exist, skipping seed")
            print()

        print(f"🎉 Setup complete: {len(PIPELINE_COLLECTIONS)} collections, {total} indexes")

    except Exception as e:
        print(f"❌ Error: {e}")
        print()
        print("💡 Troubleshooting:")
        print("   1. Check MONGODB_URI and that the server is reachable")
        print("   2. Verify the credentials in the connection string")
        raise

    finally:
        await db_manager.disconnect()
        print("👋 Disconnected from MongoDB")


if __name__ == "__main__":
    asyncio.run(setup_mongodb(sys.argv[1] if len(sys.argv) > 1 else None))
