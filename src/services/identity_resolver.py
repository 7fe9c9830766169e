"""
Identity Resolver

Maps a feedback author (known identity, email, or external user id) to a
stable internal identity, creating one when needed.
"""
import re
from typing import Optional

from src.config import get_settings
from src.models.feedback import Author
from src.models.identity import ExternalUserMapping, Identity
from src.repositories.identities import ExternalUserMappingRepository, IdentityRepository
from src.utils.observability import logger

_UNSAFE_LOCAL_PART = re.compile(r"[^a-z0-9._-]+")


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    email = email.strip().lower()
    return email if "@" in email else None


class IdentityResolver:
    """
    Resolution order, first match wins:
    1. author.identity_id, used as-is
    2. email: existing identity by email, else a new one
    3. external user id: existing mapping, else a placeholder identity
       with a synthesized `{source}+{user}@external.{domain}` email

    Creation paths are upserts, so two resolvers racing on the same author
    end up with the same identity.
    """

    def __init__(
        self,
        identities: IdentityRepository,
        mappings: ExternalUserMappingRepository,
        placeholder_domain: Optional[str] = None,
    ):
        self.identities = identities
        self.mappings = mappings
        self.placeholder_domain = placeholder_domain or get_settings().placeholder_email_domain

    async def resolve(self, author: Author, source_type: str) -> Optional[str]:
        if author.identity_id:
            identity = await self.identities.find_by_id(author.identity_id)
            if identity is None:
                # Deleted or merged away: continue without attribution
                logger.bind(identity_id=author.identity_id, source_type=source_type).warning(
                    "Author references an unknown identity"
                )
                return None
            return identity.id

        email = normalize_email(author.email)
        if email:
            identity = await self._resolve_email(email, author.name)
            if author.external_user_id:
                await self._record_mapping(source_type, author, identity)
            return identity.id

        if author.external_user_id:
            return await self._resolve_external_user(source_type, author)

        return None

    async def _resolve_email(self, email: str, name: Optional[str]) -> Identity:
        existing = await self.identities.find_by_email(email)
        if existing:
            return existing

        display_name = (name or "").strip() or email.split("@", 1)[0]
        identity = await self.identities.get_or_create(email, display_name)
        logger.bind(identity_id=identity.id).info(f"Created identity for {email}")
        return identity

    async def _resolve_external_user(self, source_type: str, author: Author) -> Optional[str]:
        mapping = await self.mappings.find_mapping(source_type, author.external_user_id)
        if mapping:
            identity = await self.identities.find_by_id(mapping.identity_id)
            if identity is None:
                logger.bind(source_type=source_type, external_user_id=author.external_user_id).warning(
                    "External user maps to an identity that no longer exists"
                )
                return None
            return identity.id

        email = self.placeholder_email(source_type, author.external_user_id)
        display_name = (author.name or "").strip() or f"{source_type} user {author.external_user_id}"
        identity = await self.identities.get_or_create(email, display_name, is_placeholder=True)
        stored = await self._record_mapping(source_type, author, identity)

        logger.bind(identity_id=stored.identity_id, external_user_id=author.external_user_id).info(
            f"Created placeholder identity for {source_type} user"
        )
        return stored.identity_id

    async def _record_mapping(self, source_type: str, author: Author, identity: Identity) -> ExternalUserMapping:
        return await self.mappings.insert_if_absent(ExternalUserMapping(
            source_type=source_type,
            external_user_id=author.external_user_id,
            identity_id=identity.id,
            external_name=author.name,
            external_email=normalize_email(author.email),
        ))

    def placeholder_email(self, source_type: str, external_user_id: str) -> str:
        source = _UNSAFE_LOCAL_PART.sub("-", source_type.lower())
        user = _UNSAFE_LOCAL_PART.sub("-", str(external_user_id).lower())
        return f"{source}+{user}@external.{self.placeholder_domain}"
