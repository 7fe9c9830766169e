"""
Health and Readiness Endpoints

Kubernetes-compatible health probes for load balancers and orchestration.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger

from src.repositories import db_manager

router = APIRouter(tags=["Health"])

# API version - single source of truth
API_VERSION = "0.1.0"


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if service is running.
    """
    return {
        "status": "healthy",
        "service": "feedback-signal-pipeline",
        "version": API_VERSION
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness probe - checks if service can handle requests.

    Verifies:
    - Pipeline services are initialized
    - MongoDB answers a ping

    Returns 200 if ready, 503 if not ready.
    """
    try:
        orchestrator = getattr(request.app.state, "orchestrator", None)
        if orchestrator is None or not orchestrator.is_initialized:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "not_ready",
                    "reason": "Pipeline not initialized"
                }
            )

        await db_manager.client.admin.command("ping")

        return {
            "status": "ready",
            "mongodb": "connected",
            "workers_running": orchestrator.is_running
        }

    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "reason": str(e)
            }
        )
