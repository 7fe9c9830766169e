"""Output contracts for the three pipeline prompts."""
from typing import Any, List, Optional
from loguru import logger
from pydantic import AliasGenerator, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from src.models.feedback import SignalType


class QualityGateDecision(BaseModel):
    """The formal output contract for the quality gate classifier."""
    extract: bool
    reason: str = ""


class ExtractedSignal(BaseModel):
    model_config = ConfigDict(
        alias_generator=AliasGenerator(validation_alias=to_camel),
        populate_by_name=True,
    )

    signal_type: SignalType
    summary: str = Field(..., min_length=1)
    implicit_need: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)
    confidence: float = Field(ge=0, le=1.0)
    sentiment: Optional[str] = None
    urgency: Optional[str] = None


class ExtractionResult(BaseModel):
    """
    The formal output contract for the extraction prompt.

    A missing or non-list `signals` is a format error; individual malformed
    entries (unknown type, confidence out of range) are dropped.
    """
    signals: List[ExtractedSignal]

    @field_validator("signals", mode="before")
    @classmethod
    def drop_malformed_signals(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value

        kept = []
        for entry in value:
            try:
                kept.append(ExtractedSignal.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Dropping malformed extracted signal: {e.error_count()} error(s)")
        return kept


class SuggestionDraft(BaseModel):
    model_config = ConfigDict(
        alias_generator=AliasGenerator(validation_alias=to_camel),
        populate_by_name=True,
    )

    title: str = Field(..., min_length=1, max_length=200)
    body: str = ""
    board_id: Optional[str] = None
    reasoning: str = ""
