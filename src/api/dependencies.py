"""
FastAPI Dependencies

Reusable dependencies for request authentication and service access.
"""
import hmac
from typing import Optional

from fastapi import Header, HTTPException, Request, status
from loguru import logger

from src.config import settings
from src.core.pipeline_orchestrator import PipelineOrchestrator


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """
    Dependency checking the X-API-Key shared secret.

    Disabled when API_KEY is not configured (local development).

    Raises:
        HTTPException: 401 if the header is missing or wrong
    """
    if not settings.api_key:
        return

    if not x_api_key:
        logger.warning("🚫 Missing X-API-Key header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key"
        )

    if not hmac.compare_digest(x_api_key, settings.api_key):
        logger.warning("🚫 Invalid X-API-Key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """
    The running pipeline, created in the application lifespan.

    Raises:
        HTTPException: 503 until the pipeline is initialized
    """
    orchestrator: Optional[PipelineOrchestrator] = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None or not orchestrator.is_initialized:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline not initialized"
        )
    return orchestrator
