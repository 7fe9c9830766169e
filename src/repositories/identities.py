"""
Identity and External User Mapping Repositories

Both writes are upserts with $setOnInsert followed by a re-read, so racing
resolvers converge on the same document instead of erroring.
"""
import datetime as dt
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from src.models.identity import ExternalUserMapping, Identity
from src.repositories.base import BaseRepository


class IdentityRepository(BaseRepository[Identity]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "identities", Identity)

    async def find_by_email(self, email: str) -> Optional[Identity]:
        return await self.find_one({"email": email.strip().lower()})

    async def get_or_create(self, email: str, display_name: str, is_placeholder: bool = False) -> Identity:
        email = email.strip().lower()
        now = dt.datetime.now(dt.UTC)
        try:
            await self.collection.update_one(
                {"email": email},
                {"$setOnInsert": {
                    "display_name": display_name,
                    "is_placeholder": is_placeholder,
                    "created_at": now,
                    "updated_at": now,
                }},
                upsert=True,
            )
        except DuplicateKeyError:
            pass  # concurrent insert won; read it back below

        identity = await self.find_by_email(email)
        if identity is None:
            raise RuntimeError(f"Identity for {email} vanished after upsert")
        return identity


class ExternalUserMappingRepository(BaseRepository[ExternalUserMapping]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "external_user_mappings", ExternalUserMapping)

    async def find_mapping(self, source_type: str, external_user_id: str) -> Optional[ExternalUserMapping]:
        return await self.find_one({"source_type": source_type, "external_user_id": external_user_id})

    async def insert_if_absent(self, mapping: ExternalUserMapping) -> ExternalUserMapping:
        """Ignore-on-conflict insert; returns whichever mapping ended up stored."""
        now = dt.datetime.now(dt.UTC)
        try:
            await self.collection.update_one(
                {"source_type": mapping.source_type, "external_user_id": mapping.external_user_id},
                {"$setOnInsert": {
                    "identity_id": mapping.identity_id,
                    "external_name": mapping.external_name,
                    "external_email": mapping.external_email,
                    "created_at": now,
                    "updated_at": now,
                }},
                upsert=True,
            )
        except DuplicateKeyError:
            pass

        stored = await self.find_mapping(mapping.source_type, mapping.external_user_id)
        return stored or mapping
