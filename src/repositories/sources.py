from motor.motor_asyncio import AsyncIOMotorDatabase

from src.models.feedback import FeedbackSource
from src.repositories.base import BaseRepository


class FeedbackSourceRepository(BaseRepository[FeedbackSource]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "feedback_sources", FeedbackSource)
