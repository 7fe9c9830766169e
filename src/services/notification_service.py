"""
Notification Service

Subscribes feedback authors to posts and tells them when their feedback was
attributed to one. Both are fire-and-forget: a failure here is logged and
never rolls back the suggestion acceptance that triggered it.
"""

import httpx
from dataclasses import dataclass, asdict
from typing import Optional, Protocol
from src.config import get_settings
from src.repositories.identities import IdentityRepository
from src.repositories.posts import PostRepository, SubscriptionRepository
from src.utils.observability import logger


@dataclass
class AttributionNotice:
    """Details of an attribution notification."""
    identity_id: str
    email: str
    display_name: str
    post_id: str
    post_title: str
    resolver_identity_id: Optional[str]
    resolver_name: Optional[str]


class AttributionNotifier(Protocol):
    """
    Protocol for attribution delivery channels.

    Implement this to add new channels (transactional email, in-app, ...).
    """

    async def notify(self, notice: AttributionNotice) -> bool:
        """
        Returns:
            True if the notice was delivered
        """
        ...


class WebhookAttributionNotifier:
    """Posts attribution notices to a webhook (typically the email sender)."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self._webhook_url = webhook_url or settings.attribution_webhook_url
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return self._webhook_url is not None

    async def notify(self, notice: AttributionNotice) -> bool:
        if not self._webhook_url:
            logger.warning("Attribution webhook not configured, skipping notification")
            return False

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self._webhook_url,
                    json={"type": "feedback_attributed", **asdict(notice)},
                    timeout=10.0
                )
                response.raise_for_status()

            logger.bind(identity_id=notice.identity_id, post_id=notice.post_id).info(
                f"Attribution notice sent for post {notice.post_id}"
            )
            return True

        except httpx.HTTPError as e:
            logger.bind(identity_id=notice.identity_id, error=str(e)).error(
                f"Failed to send attribution notice: {e}"
            )
            return False


class LogOnlyAttributionNotifier:
    """Fallback notifier used when no delivery channel is configured."""

    async def notify(self, notice: AttributionNotice) -> bool:
        logger.bind(identity_id=notice.identity_id, post_id=notice.post_id).info(
            f"Attribution (no notifier configured): {notice.email} -> {notice.post_title}"
        )
        return True


def get_attribution_notifier() -> AttributionNotifier:
    if get_settings().attribution_webhook_url:
        return WebhookAttributionNotifier()
    return LogOnlyAttributionNotifier()


class NotificationService:
    """
    Usage:
        service = NotificationService(subscriptions, identities, posts)
        await service.subscribe(author_id, post_id, reason="feedback_merged")
        await service.send_attribution(author_id, post_id, resolver_id)
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        identities: IdentityRepository,
        posts: PostRepository,
        notifier: Optional[AttributionNotifier] = None,
    ):
        self.subscriptions = subscriptions
        self.identities = identities
        self.posts = posts
        self.notifier = notifier or get_attribution_notifier()

    async def subscribe(self, identity_id: str, post_id: str, reason: str) -> bool:
        try:
            return await self.subscriptions.subscribe(post_id, identity_id, reason)
        except Exception as e:
            logger.bind(identity_id=identity_id, post_id=post_id).error(
                f"Failed to subscribe {identity_id} to post {post_id}: {e}"
            )
            return False

    async def send_attribution(
        self,
        identity_id: str,
        post_id: str,
        resolver_identity_id: Optional[str],
    ) -> bool:
        try:
            identity = await self.identities.find_by_id(identity_id)
            post = await self.posts.find_by_id(post_id)
            if identity is None or post is None:
                logger.bind(identity_id=identity_id, post_id=post_id).warning(
                    "Attribution skipped, identity or post missing"
                )
                return False

            if identity.is_placeholder:
                # Synthesized addresses are not deliverable
                logger.debug(f"Attribution skipped for placeholder identity {identity_id}")
                return False

            resolver = (
                await self.identities.find_by_id(resolver_identity_id)
                if resolver_identity_id else None
            )
            return await self.notifier.notify(AttributionNotice(
                identity_id=identity.id,
                email=identity.email,
                display_name=identity.display_name,
                post_id=post.id,
                post_title=post.title,
                resolver_identity_id=resolver_identity_id,
                resolver_name=resolver.display_name if resolver else None,
            ))
        except Exception as e:
            logger.bind(identity_id=identity_id, post_id=post_id).error(
                f"Attribution notification failed: {e}"
            )
            return False
