"""
API Routes

Modular route definitions for the feedback pipeline API.
"""
from src.api.routes.health import router as health_router
from src.api.routes.feedback import router as feedback_router
from src.api.routes.suggestions import router as suggestions_router
from src.api.routes.pipeline import router as pipeline_router

__all__ = [
    "health_router",
    "feedback_router",
    "suggestions_router",
    "pipeline_router",
]
