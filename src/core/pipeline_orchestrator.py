"""
Pipeline Orchestrator
Wires repositories, agents and services together and runs the three job
queues that drive the feedback pipeline.

Architecture:
    ingest → [feedback-ingest] enrich-context
           → [feedback-ai] extract-signals → interpret-signal (per signal)
    timer  → [feedback-maintenance] recover-stuck, expire-suggestions
"""
import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from openai import AsyncOpenAI

from src.agents.extraction_agent import ExtractionAgent
from src.agents.quality_gate_agent import QualityGateAgent
from src.agents.suggestion_agent import SuggestionAgent
from src.config import settings
from src.message_queue import (
    InMemoryQueue,
    JobDispatcher,
    JobEnqueuer,
    JobType,
    QueueName,
    QueuedJob,
    QueueWorker,
    UnrecoverableJobError,
)
from src.repositories import (
    BoardRepository,
    ExternalUserMappingRepository,
    FeedbackSourceRepository,
    IdentityRepository,
    PostRepository,
    RawItemRepository,
    SignalRepository,
    SubscriptionRepository,
    SuggestionRepository,
    VoteRepository,
    db_manager,
)
from src.services.embedding_service import EmbeddingService
from src.services.extraction_service import ExtractionService
from src.services.identity_resolver import IdentityResolver
from src.services.ingestion_service import IngestionService
from src.services.interpretation_service import InterpretationService
from src.services.maintenance_service import MaintenanceService
from src.services.notification_service import AttributionNotifier, NotificationService
from src.services.quality_gate import QualityGate
from src.services.source_registry import SourceRegistry, build_default_registry
from src.services.suggestion_service import SuggestionService
from src.utils.circuit_breaker import get_llm_circuit


class PipelineOrchestrator:
    """
    Owns the pipeline's object graph and its background workers.

    Usage:
        >>> orchestrator = PipelineOrchestrator()
        >>> await orchestrator.initialize()   # connect, build services
        >>> await orchestrator.start()        # start workers + maintenance timer
        >>> await orchestrator.ingestion.ingest(seed, source)
        >>> await orchestrator.stop()

    Tests inject a database and a recording enqueuer and call the services
    directly, without ever starting workers.
    """

    def __init__(
        self,
        database: Optional[AsyncIOMotorDatabase] = None,
        jobs: Optional[JobEnqueuer] = None,
        embedding_client: Optional[AsyncOpenAI] = None,
        quality_gate_agent: Optional[QualityGateAgent] = None,
        extraction_agent: Optional[ExtractionAgent] = None,
        suggestion_agent: Optional[SuggestionAgent] = None,
        notifier: Optional[AttributionNotifier] = None,
        source_registry: Optional[SourceRegistry] = None,
    ):
        self._database = database
        self._owns_connection = database is None
        self._jobs_override = jobs
        self._embedding_client = embedding_client
        self._quality_gate_agent = quality_gate_agent
        self._extraction_agent = extraction_agent
        self._suggestion_agent = suggestion_agent
        self._notifier = notifier
        self._source_registry = source_registry

        self.queues: Dict[QueueName, InMemoryQueue] = {}
        self.jobs: Optional[JobEnqueuer] = None
        self._workers: List[QueueWorker] = []
        self._tasks: List[asyncio.Task] = []
        self._initialized = False

        self.ingestion: Optional[IngestionService] = None
        self.extraction: Optional[ExtractionService] = None
        self.interpretation: Optional[InterpretationService] = None
        self.suggestions: Optional[SuggestionService] = None
        self.maintenance: Optional[MaintenanceService] = None

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_running(self) -> bool:
        return any(worker.is_running for worker in self._workers)

    async def initialize(self) -> None:
        """Connect (unless a database was injected) and build every service."""
        if self._initialized:
            return

        logger.info("Initializing PipelineOrchestrator")

        if self._database is None:
            await db_manager.connect()
            await db_manager.create_indexes()
            self._database = db_manager.database
        db = self._database

        self.queues = {
            name: InMemoryQueue(
                name=name.value,
                backoff_base_seconds=settings.job_backoff_base_seconds,
                backoff_max_seconds=settings.job_backoff_max_seconds,
            )
            for name in QueueName
        }
        self.jobs = self._jobs_override or JobDispatcher(
            queues=self.queues,
            max_retries={
                QueueName.INGESTION: settings.ingestion_job_attempts,
                QueueName.AI: settings.ai_job_attempts,
                QueueName.MAINTENANCE: settings.maintenance_job_attempts,
            },
        )

        # Repositories
        raw_items = RawItemRepository(db)
        signals = SignalRepository(db)
        suggestion_repo = SuggestionRepository(db)
        identities = IdentityRepository(db)
        posts = PostRepository(db)
        boards = BoardRepository(db)

        # Model-backed collaborators are optional: without an API key every
        # stage runs its deterministic fallback
        quality_gate_agent = self._quality_gate_agent
        extraction_agent = self._extraction_agent
        suggestion_agent = self._suggestion_agent
        if settings.llm_enabled:
            quality_gate_agent = quality_gate_agent or QualityGateAgent()
            extraction_agent = extraction_agent or ExtractionAgent()
            suggestion_agent = suggestion_agent or SuggestionAgent()
        else:
            logger.warning("⚠️ OPENAI_API_KEY not set, running without generative models")

        embedding_client = self._embedding_client
        if embedding_client is None and settings.openai_api_key:
            embedding_client = AsyncOpenAI(api_key=settings.openai_api_key)

        circuit = get_llm_circuit()

        self.ingestion = IngestionService(
            raw_items=raw_items,
            jobs=self.jobs,
            identity_resolver=IdentityResolver(identities, ExternalUserMappingRepository(db)),
            source_registry=self._source_registry or build_default_registry(FeedbackSourceRepository(db)),
        )
        self.extraction = ExtractionService(
            raw_items=raw_items,
            signals=signals,
            quality_gate=QualityGate(quality_gate_agent, circuit),
            agent=extraction_agent,
            jobs=self.jobs,
        )
        self.suggestions = SuggestionService(
            suggestions=suggestion_repo,
            raw_items=raw_items,
            posts=posts,
            boards=boards,
            votes=VoteRepository(db),
            notifications=NotificationService(
                SubscriptionRepository(db), identities, posts, self._notifier
            ),
        )
        self.interpretation = InterpretationService(
            raw_items=raw_items,
            signals=signals,
            suggestions=self.suggestions,
            embeddings=EmbeddingService(embedding_client, signals, posts),
            posts=posts,
            boards=boards,
            agent=suggestion_agent,
            circuit=circuit,
        )
        self.maintenance = MaintenanceService(
            raw_items=raw_items,
            signals=signals,
            suggestions=self.suggestions,
            jobs=self.jobs,
        )

        self._initialized = True
        logger.info("✅ PipelineOrchestrator initialized")

    async def handle_job(self, job: QueuedJob) -> None:
        """Route one job to its service. Raises for the worker's retry policy."""
        job_type = JobType(job.job_type)

        if job_type == JobType.ENRICH_CONTEXT:
            await self.ingestion.enrich_context(self._payload_id(job, "item_id"))
        elif job_type == JobType.EXTRACT_SIGNALS:
            await self.extraction.extract_signals(self._payload_id(job, "item_id"))
        elif job_type == JobType.INTERPRET_SIGNAL:
            await self.interpretation.interpret_signal(self._payload_id(job, "signal_id"))
        elif job_type == JobType.RECOVER_STUCK:
            await self.maintenance.recover_stuck()
        elif job_type == JobType.EXPIRE_SUGGESTIONS:
            await self.maintenance.expire_stale_suggestions()
        else:
            raise UnrecoverableJobError(f"No handler for job type {job_type}")

    @staticmethod
    def _payload_id(job: QueuedJob, key: str) -> str:
        value = job.payload.get(key)
        if not value:
            raise UnrecoverableJobError(f"Job {job.id} payload is missing {key}")
        return value

    async def start(self) -> None:
        """Start one worker per queue and the maintenance timer."""
        if not self._initialized:
            await self.initialize()
        if self._tasks:
            logger.warning("PipelineOrchestrator already started")
            return

        concurrency = {
            QueueName.INGESTION: settings.ingestion_concurrency,
            QueueName.AI: settings.ai_concurrency,
            QueueName.MAINTENANCE: settings.maintenance_concurrency,
        }
        for name, queue in self.queues.items():
            worker = QueueWorker(
                queue=queue,
                handler=self.handle_job,
                max_concurrent=concurrency[name],
                poll_interval=settings.queue_poll_interval_seconds,
                name=name.value,
            )
            self._workers.append(worker)
            self._tasks.append(worker.start_in_background())

        self._tasks.append(asyncio.create_task(self._run_maintenance_timer()))
        logger.info(f"🚀 Pipeline started with {len(self._workers)} queue workers")

    async def _run_maintenance_timer(self) -> None:
        interval = settings.maintenance_interval_seconds
        logger.bind(interval_seconds=interval).info("Maintenance timer started")

        while True:
            try:
                await asyncio.sleep(interval)
                await self.jobs.enqueue_job(JobType.RECOVER_STUCK, {})
                await self.jobs.enqueue_job(JobType.EXPIRE_SUGGESTIONS, {})
            except asyncio.CancelledError:
                logger.info("Maintenance timer cancelled")
                break
            except Exception as e:
                logger.error(f"Maintenance timer error: {e}")

    async def stop(self) -> None:
        """Drain workers, cancel background tasks, close the connection we opened."""
        logger.info("Stopping PipelineOrchestrator")

        for worker in self._workers:
            await worker.stop()

        for task in self._tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._workers = []
        self._tasks = []

        if self._owns_connection and self._initialized:
            await db_manager.disconnect()
            self._database = None
            self._initialized = False

        logger.info("✅ PipelineOrchestrator stopped")

    async def queue_status(self) -> Dict[str, Any]:
        queues = {}
        for name, queue in self.queues.items():
            metrics = await queue.get_metrics()
            queues[name.value] = metrics.model_dump()

        return {
            "queues": queues,
            "llm_circuit": get_llm_circuit().get_status(),
            "workers_running": self.is_running,
        }
