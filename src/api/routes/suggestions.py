"""
Suggestion Review Endpoints

What the review UI calls to list pending suggestions and accept or
dismiss them.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.api.dependencies import get_orchestrator, verify_api_key
from src.api.models.feedback import AcceptSuggestionRequest, DismissSuggestionRequest
from src.core.pipeline_orchestrator import PipelineOrchestrator
from src.models.feedback import SuggestionType
from src.services.suggestion_service import (
    InvalidSuggestionStateError,
    SuggestionEdits,
    SuggestionError,
    SuggestionNotFoundError,
    SuggestionValidationError,
)

router = APIRouter(prefix="/suggestions", tags=["Suggestions"], dependencies=[Depends(verify_api_key)])


def _to_http_error(error: SuggestionError) -> HTTPException:
    if isinstance(error, SuggestionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, InvalidSuggestionStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, SuggestionValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


@router.get("")
async def list_pending_suggestions(
    suggestion_type: Optional[SuggestionType] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    suggestions = await orchestrator.suggestions.list_pending(suggestion_type, limit=limit, skip=skip)
    return {
        "count": len(suggestions),
        "suggestions": [s.model_dump(mode="json", exclude={"embedding"}) for s in suggestions],
    }


@router.get("/stats")
async def suggestion_stats(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.suggestions.suggestion_stats()


@router.post("/{suggestion_id}/accept")
async def accept_suggestion(
    suggestion_id: str,
    request: AcceptSuggestionRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """
    Accept a pending suggestion.

    Merge suggestions attach the feedback to the target post; create
    suggestions publish a new post, using any edits in the request body.
    """
    service = orchestrator.suggestions
    try:
        suggestion = await service.suggestions.find_by_id(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")

        if suggestion.suggestion_type == SuggestionType.MERGE_POST:
            resolved = await service.accept_merge_suggestion(suggestion_id, request.resolver_identity_id)
        else:
            resolved = await service.accept_create_suggestion(
                suggestion_id,
                request.resolver_identity_id,
                SuggestionEdits(title=request.title, body=request.body, board_id=request.board_id),
            )
    except SuggestionError as e:
        raise _to_http_error(e)

    return {
        "status": resolved.status,
        "suggestion_id": resolved.id,
        "result_post_id": resolved.result_post_id,
    }


@router.post("/{suggestion_id}/dismiss")
async def dismiss_suggestion(
    suggestion_id: str,
    request: DismissSuggestionRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        dismissed = await orchestrator.suggestions.dismiss_suggestion(
            suggestion_id, request.resolver_identity_id
        )
    except SuggestionError as e:
        raise _to_http_error(e)

    return {"suggestion_id": suggestion_id, "dismissed": dismissed}
