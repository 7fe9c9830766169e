"""
FastAPI Application

Main entry point for the feedback signal pipeline API.
Handles application lifecycle and router mounting.
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from loguru import logger

from src.core.pipeline_orchestrator import PipelineOrchestrator
from src.utils.observability import configure_logging
from src.api.routes import feedback_router, health_router, pipeline_router, suggestions_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle: startup and shutdown events.

    Startup:
    - Configure logging
    - Initialize PipelineOrchestrator (connects to MongoDB, creates indexes)
    - Start queue workers and the maintenance timer

    Shutdown:
    - Drain workers gracefully
    - Disconnect from MongoDB
    """
    configure_logging()
    logger.info("Starting feedback pipeline API server...")

    orchestrator = PipelineOrchestrator()
    await orchestrator.initialize()
    await orchestrator.start()

    app.state.orchestrator = orchestrator

    logger.info("API server ready to receive feedback")

    yield

    logger.info("Shutting down API server...")
    await orchestrator.stop()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Feedback Signal Pipeline API",
    description="Turns raw customer feedback into reviewed merge/create suggestions",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(health_router)
app.include_router(feedback_router)
app.include_router(suggestions_router)
app.include_router(pipeline_router)
