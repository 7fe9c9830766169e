"""
Source Registry

Resolves a feedback source to the connector that produced it. Native
sources (the product itself, the widget, the public API) have no connector:
everything they know arrives in the seed.
"""

import datetime as dt
import html
import re
from typing import Any, Dict, Optional, Protocol

import httpx

from src.config import get_settings
from src.models.feedback import (
    NATIVE_SOURCE_TYPES,
    ContextEnvelope,
    FeedbackSource,
    RawFeedbackItem,
    ThreadMessage,
    ThreadRole,
)
from src.repositories.sources import FeedbackSourceRepository
from src.utils.observability import logger


class FeedbackConnector(Protocol):
    """
    Protocol for source connectors.

    Implement this to pull extra context (conversation threads, customer
    metadata) for items from an external tool.
    """

    source_type: str

    async def enrich(
        self,
        item: RawFeedbackItem,
        source: Optional[FeedbackSource],
    ) -> Optional[ContextEnvelope]:
        """
        Returns:
            A replacement context envelope, or None to keep the seed's one
        """
        ...


_TAG = re.compile(r"<[^>]+>")

# Intercom author types written by the workspace rather than the customer
_INTERCOM_AGENT_TYPES = {"admin", "bot", "team"}


def _html_to_text(body: Optional[str]) -> str:
    return html.unescape(_TAG.sub(" ", body or "")).strip()


class IntercomConnector:
    """Fetches the full conversation thread for Intercom-sourced items."""

    source_type = "intercom"

    def __init__(
        self,
        access_token: Optional[str] = None,
        api_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self._access_token = access_token or settings.intercom_access_token
        self._api_url = (api_url or settings.intercom_api_url).rstrip("/")
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return self._access_token is not None

    async def enrich(
        self,
        item: RawFeedbackItem,
        source: Optional[FeedbackSource],
    ) -> Optional[ContextEnvelope]:
        token = (source.config.get("access_token") if source else None) or self._access_token
        if not token:
            logger.warning("Intercom access token not configured, skipping enrichment")
            return None

        async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
            response = await client.get(
                f"{self._api_url}/conversations/{item.external_id}",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()

        return self._to_envelope(response.json(), item.context_envelope)

    def _to_envelope(self, conversation: Dict[str, Any], existing: ContextEnvelope) -> ContextEnvelope:
        thread: list[ThreadMessage] = []

        opening = conversation.get("source") or {}
        if opening.get("body"):
            thread.append(self._to_message(opening))

        parts = (conversation.get("conversation_parts") or {}).get("conversation_parts") or []
        for part in parts:
            if part.get("part_type") not in (None, "comment", "note") or not part.get("body"):
                continue
            message = self._to_message(part)
            if part.get("part_type") == "note":
                # Internal notes are never customer voice
                message.role = ThreadRole.AGENT.value
            thread.append(message)

        metadata = {
            **existing.metadata,
            "intercom_state": conversation.get("state"),
            "intercom_tags": [t.get("name") for t in (conversation.get("tags") or {}).get("tags", [])],
        }
        return ContextEnvelope(thread=thread or existing.thread, metadata=metadata)

    def _to_message(self, part: Dict[str, Any]) -> ThreadMessage:
        author = part.get("author") or {}
        role = ThreadRole.AGENT if author.get("type") in _INTERCOM_AGENT_TYPES else ThreadRole.CUSTOMER
        created = part.get("created_at")
        return ThreadMessage(
            role=role,
            text=_html_to_text(part.get("body")),
            author_name=author.get("name"),
            created_at=dt.datetime.fromtimestamp(created, dt.UTC) if isinstance(created, (int, float)) else None,
        )


class SourceRegistry:
    """
    Maps source types to connectors.

    Usage:
        registry = SourceRegistry(source_repo)
        registry.register(IntercomConnector())
        connector = await registry.resolve_connector(item.source_id, item.source_type)
    """

    def __init__(self, sources: FeedbackSourceRepository):
        self.sources = sources
        self._connectors: Dict[str, FeedbackConnector] = {}

    def register(self, connector: FeedbackConnector) -> None:
        self._connectors[connector.source_type] = connector
        logger.debug(f"Registered connector for {connector.source_type}")

    async def get_source(self, source_id: str) -> Optional[FeedbackSource]:
        return await self.sources.find_by_id(source_id)

    async def resolve_connector(self, source_id: str, source_type: str) -> Optional[FeedbackConnector]:
        """
        Returns:
            The connector for the source, or None for native sources, disabled
            sources and types nobody registered a connector for
        """
        if source_type in NATIVE_SOURCE_TYPES:
            return None

        source = await self.get_source(source_id)
        if source is not None and not source.enabled:
            logger.info(f"Source {source_id} is disabled, skipping connector")
            return None

        return self._connectors.get(source_type)


def build_default_registry(sources: FeedbackSourceRepository) -> SourceRegistry:
    registry = SourceRegistry(sources)
    registry.register(IntercomConnector())
    return registry
