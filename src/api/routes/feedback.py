"""
Feedback Ingestion Endpoints

Entry point for native sources (widget, API) and for connectors pushing
feedback they pulled from external tools.
"""
from fastapi import APIRouter, Depends, status
from loguru import logger

from src.api.dependencies import get_orchestrator, verify_api_key
from src.api.models.feedback import FeedbackItemRequest, IngestResponse
from src.core.pipeline_orchestrator import PipelineOrchestrator
from src.models.feedback import FeedbackSeed, SourceContext

router = APIRouter(prefix="/feedback", tags=["Feedback"], dependencies=[Depends(verify_api_key)])


@router.post(
    "/sources/{source_id}/items",
    response_model=IngestResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def ingest_feedback_item(
    source_id: str,
    request: FeedbackItemRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """
    Ingest one feedback item.

    Safe to retry: the same (source, externalId) always returns the same
    item id, with `deduplicated=true` after the first call.
    """
    seed = FeedbackSeed.model_validate(request.model_dump(exclude={"source_type"}))
    result = await orchestrator.ingestion.ingest(
        seed,
        SourceContext(source_id=source_id, source_type=request.source_type),
    )

    logger.bind(source_id=source_id, item_id=result.item_id, deduplicated=result.deduplicated).info(
        "Feedback item accepted"
    )
    return IngestResponse(item_id=result.item_id, deduplicated=result.deduplicated)
