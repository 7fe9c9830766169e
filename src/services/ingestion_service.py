"""
Ingestion Service

Accepts raw feedback seeds, deduplicates and persists them, then runs the
context-enrichment stage that hands items to extraction.
"""
from dataclasses import dataclass
from typing import Optional

from pymongo.errors import DuplicateKeyError

from src.message_queue.base import JobEnqueuer, JobType, UnrecoverableJobError
from src.models.feedback import (
    Author,
    FeedbackContent,
    FeedbackSeed,
    RawFeedbackItem,
    RawItemState,
    SourceContext,
)
from src.models.post import FeedbackPost
from src.repositories.raw_items import RawItemRepository
from src.services.identity_resolver import IdentityResolver
from src.services.source_registry import SourceRegistry
from src.utils.observability import logger, log_pipeline_event

PRODUCT_SOURCE_TYPE = "product"


@dataclass
class IngestResult:
    item_id: str
    deduplicated: bool


def post_external_id(post_id: str) -> str:
    return f"post:{post_id}"


def parse_post_external_id(external_id: str) -> Optional[str]:
    """Inverse of post_external_id; None for anything that is not a product post."""
    if external_id and external_id.startswith("post:"):
        return external_id.split(":", 1)[1] or None
    return None


class IngestionService:
    """
    Ingestion is safe to call any number of times for the same external
    event: (source_id, dedupe_key) is unique and a repeat returns the
    existing row without enqueueing anything.
    """

    def __init__(
        self,
        raw_items: RawItemRepository,
        jobs: JobEnqueuer,
        identity_resolver: IdentityResolver,
        source_registry: SourceRegistry,
    ):
        self.raw_items = raw_items
        self.jobs = jobs
        self.identity_resolver = identity_resolver
        self.source_registry = source_registry

    async def ingest(self, seed: FeedbackSeed, source: SourceContext) -> IngestResult:
        dedupe_key = RawFeedbackItem.build_dedupe_key(source.source_type, seed.external_id)

        existing = await self.raw_items.find_by_dedupe_key(source.source_id, dedupe_key)
        if existing:
            logger.bind(item_id=existing.id).debug(f"Duplicate feedback {dedupe_key}")
            return IngestResult(item_id=existing.id, deduplicated=True)

        item = RawFeedbackItem(
            source_id=source.source_id,
            source_type=source.source_type,
            external_id=seed.external_id,
            dedupe_key=dedupe_key,
            external_url=seed.external_url,
            source_created_at=seed.source_created_at,
            author=seed.author,
            content=seed.content,
            identity_id=seed.author.identity_id,
            processing_state=RawItemState.PENDING_CONTEXT,
        )
        if seed.context_envelope is not None:
            item.context_envelope = seed.context_envelope

        try:
            item = await self.raw_items.create(item)
        except DuplicateKeyError:
            # A concurrent ingest of the same event won the insert
            winner = await self.raw_items.find_by_dedupe_key(source.source_id, dedupe_key)
            if winner is None:
                raise
            return IngestResult(item_id=winner.id, deduplicated=True)

        await self.jobs.enqueue_job(JobType.ENRICH_CONTEXT, {"item_id": item.id})

        log_pipeline_event(
            "item_ingested",
            item_id=item.id,
            source_id=source.source_id,
            source_type=source.source_type,
        )
        return IngestResult(item_id=item.id, deduplicated=False)

    async def ingest_post(self, post: FeedbackPost, source_id: str) -> IngestResult:
        """Feed an existing product post through the pipeline (duplicate detection)."""
        seed = FeedbackSeed(
            external_id=post_external_id(post.id),
            source_created_at=post.created_at,
            author=Author(identity_id=post.author_identity_id),
            content=FeedbackContent(subject=post.title, text=post.body or post.title),
        )
        return await self.ingest(seed, SourceContext(source_id=source_id, source_type=PRODUCT_SOURCE_TYPE))

    async def enrich_context(self, item_id: str) -> None:
        """
        Context stage: resolve the author and pull connector context, then
        hand the item to extraction.

        Raises:
            UnrecoverableJobError: If the item does not exist
        """
        item = await self.raw_items.find_by_id(item_id)
        if item is None:
            raise UnrecoverableJobError(f"Raw feedback item {item_id} not found")

        if item.processing_state != RawItemState.PENDING_CONTEXT:
            logger.debug(f"Item {item_id} already past context stage ({item.processing_state}), skipping")
            return

        identity_id = await self.identity_resolver.resolve(item.author, item.source_type)

        envelope = item.context_envelope
        connector = await self.source_registry.resolve_connector(item.source_id, item.source_type)
        if connector is not None:
            try:
                source = await self.source_registry.get_source(item.source_id)
                enriched = await connector.enrich(item, source)
                if enriched is not None:
                    envelope = enriched
            except Exception as e:
                # Missing context degrades extraction quality but must not block the item
                logger.bind(item_id=item_id, source_type=item.source_type).warning(
                    f"Context enrichment failed for item {item_id}: {e}"
                )

        moved = await self.raw_items.transition(
            item_id,
            [RawItemState.PENDING_CONTEXT],
            RawItemState.READY_FOR_EXTRACTION,
            set_fields={
                "identity_id": identity_id,
                "context_envelope": envelope.model_dump(),
            },
        )
        if moved is None:
            logger.debug(f"Item {item_id} was advanced concurrently, skipping enqueue")
            return

        await self.jobs.enqueue_job(JobType.EXTRACT_SIGNALS, {"item_id": item_id})
