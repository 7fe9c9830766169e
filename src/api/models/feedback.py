"""
Pydantic models for the feedback pipeline HTTP API.

Request bodies accept camelCase (what connectors send) and snake_case.
"""
from typing import Optional

from pydantic import AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.feedback import FeedbackSeed


class FeedbackItemRequest(FeedbackSeed):
    """One inbound feedback seed plus the type of the source that sent it."""
    source_type: str = Field(..., min_length=1, description="Connector type, e.g. intercom, widget, api")


class IngestResponse(BaseModel):
    item_id: str
    deduplicated: bool


class _CamelRequest(BaseModel):
    model_config = ConfigDict(
        alias_generator=AliasGenerator(validation_alias=to_camel),
        populate_by_name=True,
    )


class AcceptSuggestionRequest(_CamelRequest):
    resolver_identity_id: str = Field(..., min_length=1)

    # Reviewer edits, only used for create_post suggestions
    title: Optional[str] = Field(None, max_length=200)
    body: Optional[str] = None
    board_id: Optional[str] = None


class DismissSuggestionRequest(_CamelRequest):
    resolver_identity_id: str = Field(..., min_length=1)
