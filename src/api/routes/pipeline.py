"""
Pipeline Operations Endpoints

Operator views of pipeline state and manual re-triggers for failed items.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.api.dependencies import get_orchestrator, verify_api_key
from src.core.pipeline_orchestrator import PipelineOrchestrator
from src.services.maintenance_service import ItemNotFoundError

router = APIRouter(prefix="/pipeline", tags=["Pipeline"], dependencies=[Depends(verify_api_key)])


@router.get("/stats")
async def pipeline_stats(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    """Item and signal counts per processing state, plus pending suggestions."""
    return await orchestrator.maintenance.pipeline_stats()


@router.get("/queues")
async def queue_status(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    """
    Queue metrics per queue and the model-provider circuit state.
    """
    return await orchestrator.queue_status()


@router.post("/items/{item_id}/retry")
async def retry_item(item_id: str, orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    try:
        retried = await orchestrator.maintenance.retry_failed_item(item_id)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if not retried:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Item {item_id} is not in failed state"
        )
    return {"item_id": item_id, "retried": True}


@router.post("/items/retry-failed")
async def retry_all_failed(
    limit: int = Query(500, ge=1, le=5000),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    retried = await orchestrator.maintenance.retry_all_failed(limit=limit)
    return {"retried": retried}
