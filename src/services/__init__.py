"""Services package."""
from src.services.identity_resolver import IdentityResolver, normalize_email
from src.services.source_registry import (
    FeedbackConnector,
    IntercomConnector,
    SourceRegistry,
    build_default_registry,
)
from src.services.ingestion_service import IngestionService, IngestResult
from src.services.quality_gate import QualityGate, QualityGateResult
from src.services.embedding_service import EmbeddingService, SimilarPost
from src.services.extraction_service import ExtractionService
from src.services.notification_service import (
    AttributionNotice,
    AttributionNotifier,
    LogOnlyAttributionNotifier,
    NotificationService,
    WebhookAttributionNotifier,
    get_attribution_notifier,
)
from src.services.suggestion_service import (
    InvalidSuggestionStateError,
    SuggestionEdits,
    SuggestionError,
    SuggestionNotFoundError,
    SuggestionService,
    SuggestionValidationError,
)
from src.services.interpretation_service import InterpretationService
from src.services.maintenance_service import ItemNotFoundError, MaintenanceService, RecoveryReport

__all__ = [
    "IdentityResolver",
    "normalize_email",
    "FeedbackConnector",
    "IntercomConnector",
    "SourceRegistry",
    "build_default_registry",
    "IngestionService",
    "IngestResult",
    "QualityGate",
    "QualityGateResult",
    "EmbeddingService",
    "SimilarPost",
    "ExtractionService",
    "AttributionNotice",
    "AttributionNotifier",
    "LogOnlyAttributionNotifier",
    "NotificationService",
    "WebhookAttributionNotifier",
    "get_attribution_notifier",
    "InvalidSuggestionStateError",
    "SuggestionEdits",
    "SuggestionError",
    "SuggestionNotFoundError",
    "SuggestionService",
    "SuggestionValidationError",
    "InterpretationService",
    "ItemNotFoundError",
    "MaintenanceService",
    "RecoveryReport",
]
