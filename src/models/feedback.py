"""
Feedback pipeline domain models.

State enums are persisted as their string values and are read by dashboards
and exports, so the values must never be renamed.
"""
import datetime as dt
from enum import StrEnum
from typing import Any, Dict, List, Optional
from pydantic import AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from src.models.base import MongoBaseModel, utc_now


class RawItemState(StrEnum):
    PENDING_CONTEXT = "pending_context"
    READY_FOR_EXTRACTION = "ready_for_extraction"
    EXTRACTING = "extracting"
    INTERPRETING = "interpreting"
    COMPLETED = "completed"
    FAILED = "failed"


class SignalState(StrEnum):
    PENDING_INTERPRETATION = "pending_interpretation"
    INTERPRETING = "interpreting"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_SIGNAL_STATES = (SignalState.COMPLETED, SignalState.FAILED)


class SignalType(StrEnum):
    FEATURE_REQUEST = "feature_request"
    BUG_REPORT = "bug_report"
    USABILITY_ISSUE = "usability_issue"
    QUESTION = "question"
    PRAISE = "praise"
    COMPLAINT = "complaint"
    CHURN_RISK = "churn_risk"


class SuggestionType(StrEnum):
    MERGE_POST = "merge_post"
    CREATE_POST = "create_post"


class SuggestionStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


class SourceKind(StrEnum):
    """
    Closed classification of where a piece of feedback came from.

    INTERNAL: posts authored inside the product itself.
    HIGH_INTENT: native widget/API submissions, users chose to give feedback.
    EXTERNAL: support tools and chat, feedback mixed with routine traffic.
    """
    INTERNAL = "internal"
    HIGH_INTENT = "high_intent"
    EXTERNAL = "external"

    @classmethod
    def for_source_type(cls, source_type: str) -> "SourceKind":
        source_type = (source_type or "").lower()
        if source_type in INTERNAL_SOURCE_TYPES:
            return cls.INTERNAL
        if source_type in HIGH_INTENT_SOURCE_TYPES:
            return cls.HIGH_INTENT
        return cls.EXTERNAL

    @property
    def is_high_intent(self) -> bool:
        return self in (SourceKind.INTERNAL, SourceKind.HIGH_INTENT)


INTERNAL_SOURCE_TYPES = frozenset({"product"})
HIGH_INTENT_SOURCE_TYPES = frozenset({"widget", "api"})
NATIVE_SOURCE_TYPES = INTERNAL_SOURCE_TYPES | HIGH_INTENT_SOURCE_TYPES


class ThreadRole(StrEnum):
    CUSTOMER = "customer"
    AGENT = "agent"
    SYSTEM = "system"


# ============================================
# INBOUND SEED (camelCase on the wire)
# ============================================

class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=AliasGenerator(validation_alias=to_camel),
        populate_by_name=True,
        use_enum_values=True,
    )


class Author(_WireModel):
    email: Optional[str] = None
    external_user_id: Optional[str] = None
    identity_id: Optional[str] = None
    name: Optional[str] = None


class FeedbackContent(_WireModel):
    subject: Optional[str] = None
    text: str

    @property
    def combined(self) -> str:
        return f"{self.subject}\n{self.text}" if self.subject else self.text

    @property
    def word_count(self) -> int:
        return len(self.combined.split())


class ThreadMessage(_WireModel):
    role: ThreadRole = ThreadRole.CUSTOMER
    text: str
    author_name: Optional[str] = None
    created_at: Optional[dt.datetime] = None


class ContextEnvelope(_WireModel):
    thread: List[ThreadMessage] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def customer_messages(self, limit: int) -> List[ThreadMessage]:
        """Last `limit` customer-authored messages, oldest first."""
        customer = [m for m in self.thread if m.role == ThreadRole.CUSTOMER]
        return customer[-limit:] if limit > 0 else []


class FeedbackSeed(_WireModel):
    external_id: str
    external_url: Optional[str] = None
    source_created_at: dt.datetime = Field(default_factory=utc_now)
    author: Author = Field(default_factory=Author)
    content: FeedbackContent
    context_envelope: Optional[ContextEnvelope] = None


class SourceContext(_WireModel):
    source_id: str
    source_type: str

    @property
    def kind(self) -> SourceKind:
        return SourceKind.for_source_type(self.source_type)


# ============================================
# PERSISTED DOCUMENTS
# ============================================

class FeedbackSource(MongoBaseModel):
    """A configured feedback source (an Intercom workspace, the widget, ...)."""
    source_type: str
    name: str
    enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)


class RawFeedbackItem(MongoBaseModel):
    source_id: str
    source_type: str
    external_id: str
    dedupe_key: str
    external_url: Optional[str] = None
    source_created_at: dt.datetime = Field(default_factory=utc_now)

    author: Author = Field(default_factory=Author)
    content: FeedbackContent
    context_envelope: ContextEnvelope = Field(default_factory=ContextEnvelope)
    identity_id: Optional[str] = None

    processing_state: RawItemState = RawItemState.PENDING_CONTEXT
    state_changed_at: dt.datetime = Field(default_factory=utc_now)
    attempt_count: int = 0
    last_error: Optional[str] = None
    processed_at: Optional[dt.datetime] = None

    extraction_input_tokens: Optional[int] = None
    extraction_output_tokens: Optional[int] = None

    @property
    def source_kind(self) -> SourceKind:
        return SourceKind.for_source_type(self.source_type)

    @staticmethod
    def build_dedupe_key(source_type: str, external_id: str) -> str:
        return f"{source_type}:{external_id}"


class FeedbackSignal(MongoBaseModel):
    raw_feedback_item_id: str
    signal_type: SignalType
    summary: str
    implicit_need: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)
    extraction_confidence: float = Field(ge=0, le=1.0)
    sentiment: Optional[str] = None
    urgency: Optional[str] = None

    embedding: Optional[List[float]] = None
    embedding_model: Optional[str] = None
    embedding_updated_at: Optional[dt.datetime] = None

    extraction_model: str
    extraction_prompt_version: str

    processing_state: SignalState = SignalState.PENDING_INTERPRETATION
    state_changed_at: dt.datetime = Field(default_factory=utc_now)
    last_error: Optional[str] = None

    @property
    def embedding_text(self) -> str:
        if self.implicit_need:
            return f"{self.summary}\n{self.implicit_need}"
        return self.summary


class FeedbackSuggestion(MongoBaseModel):
    suggestion_type: SuggestionType
    status: SuggestionStatus = SuggestionStatus.PENDING
    raw_feedback_item_id: str
    signal_id: Optional[str] = None

    # merge_post
    target_post_id: Optional[str] = None
    similarity_score: Optional[float] = None

    # create_post
    suggested_title: Optional[str] = None
    suggested_body: Optional[str] = None
    board_id: Optional[str] = None

    reasoning: str = ""
    embedding: Optional[List[float]] = None

    result_post_id: Optional[str] = None
    resolved_at: Optional[dt.datetime] = None
    resolved_by_identity_id: Optional[str] = None
