"""
Structured Logging & Observability
Production-grade logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from typing import Any
from src.config import get_settings


def configure_logging():
    """
    Configure loguru for production observability.

    In development: Human-readable colorized output
    In production: Structured JSON logs for ingestion (ELK, Datadog, etc.)
    """
    settings = get_settings()

    logger.remove()

    if not settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            level=settings.log_level,
            colorize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,  # Output as JSON
        )

    logger.info(f"Logging configured: level={settings.log_level}, structured={settings.enable_structured_logging}")


def log_llm_call(
    stage: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    duration_ms: float,
    success: bool = True,
    error: str | None = None,
    **context: Any
):
    """
    Structured logging for LLM API calls.

    Enables token accounting, latency monitoring and error tracking per
    pipeline stage.

    Args:
        stage: Pipeline stage that made the call (e.g. "extraction")
        model: Model used (e.g. "openai:gpt-4o")
        input_tokens: Input token count
        output_tokens: Output token count
        duration_ms: API latency in milliseconds
        success: Whether the call succeeded
        error: Error message if failed
        **context: Ids of the item/signal being processed
    """
    log_data = {
        "event_type": "llm_call",
        "stage": stage,
        "model": model,
        "tokens": {
            "input": input_tokens,
            "output": output_tokens,
            "total": input_tokens + output_tokens
        },
        "duration_ms": round(duration_ms, 2),
        "success": success,
        **context,
    }

    if error:
        log_data["error"] = error

    level = "INFO" if success else "ERROR"
    logger.bind(**log_data).log(
        level,
        f"LLM Call: {stage} | {model} | {input_tokens + output_tokens} tokens"
    )


def log_pipeline_event(event_type: str, **details: Any):
    """
    Log pipeline milestones for analytics.

    Examples:
        - item ingested / deduplicated
        - item state transitions
        - suggestion accepted or dismissed

    Args:
        event_type: Type of event (e.g. "item_completed")
        **details: Event-specific data
    """
    logger.bind(event_type=event_type, **details).success(f"Pipeline Event: {event_type}")
