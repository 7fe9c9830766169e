"""
Centralized Configuration System
Environment-aware settings for the feedback pipeline, its workers and the API.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal, Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow"
    )
    """
    Production-grade configuration management.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # OPENAI CONFIGURATION
    # ============================================
    # None means "no model configured": every stage falls back to heuristics
    openai_api_key: Optional[str] = None

    # ============================================
    # MODEL SELECTION (by pipeline role)
    # ============================================
    quality_gate_model: str = "openai:gpt-4o-mini"
    extraction_model: str = "openai:gpt-4o"
    suggestion_model: str = "openai:gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"

    # ============================================
    # MONGODB
    # ============================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "feedback_pipeline"
    mongodb_max_pool_size: int = 50
    mongodb_min_pool_size: int = 5
    mongodb_server_selection_timeout_ms: int = 5000

    # ============================================
    # PIPELINE RULES
    # ============================================
    gate_min_words: int = 5          # Below this the item is skipped outright
    gate_auto_pass_words: int = 15   # High-intent sources at or above this skip the model
    gate_thread_messages: int = 5    # Customer messages sent to the gate model
    min_signal_confidence: float = 0.5
    max_signals_per_item: int = 5
    merge_threshold_internal: float = 0.75
    merge_threshold_external: float = 0.80
    similar_posts_limit: int = 5
    placeholder_email_domain: str = "feedback.local"

    # ============================================
    # RECOVERY & MAINTENANCE
    # ============================================
    stuck_timeout_minutes: int = 30
    max_extraction_attempts: int = 3
    suggestion_expiry_days: int = 30
    maintenance_interval_seconds: float = 300.0

    # ============================================
    # JOB QUEUES
    # ============================================
    ingestion_concurrency: int = 5
    ai_concurrency: int = 1
    maintenance_concurrency: int = 1
    queue_poll_interval_seconds: float = 1.0
    ingestion_job_attempts: int = 5
    ai_job_attempts: int = 3
    maintenance_job_attempts: int = 1
    job_backoff_base_seconds: float = 30.0
    job_backoff_max_seconds: float = 3600.0

    # ============================================
    # LLM RESILIENCE
    # ============================================
    max_retries: int = 3
    retry_min_wait_seconds: int = 2
    retry_max_wait_seconds: int = 10
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_recovery_timeout: float = 60.0
    circuit_breaker_half_open_max_calls: int = 1

    # ============================================
    # INTEGRATIONS
    # ============================================
    intercom_access_token: Optional[str] = None
    intercom_api_url: str = "https://api.intercom.io"
    attribution_webhook_url: Optional[str] = None

    # ============================================
    # API & LOGGING
    # ============================================
    api_key: Optional[str] = None  # Shared secret for X-API-Key; None disables the check
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs

    # ============================================
    # ENVIRONMENT
    # ============================================
    environment: Literal["development", "staging", "production"] = "development"

    @property
    def llm_enabled(self) -> bool:
        """True when a generative model can be called."""
        return bool(self.openai_api_key)


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()


# Convenience accessor for common use
settings = get_settings()
