"""Shared configuration for all services."""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis Configuration
    redis_url: str = "redis://localhost:6379"
    redis_progress_channel: str = "job_progress"

    # MongoDB Configuration
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "curation"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False

    # OpenAI Configuration
    openai_api_key: Optional[str] = None
    openai_chat_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    openai_timeout: float = 60.0

    # Job Configuration
    job_timeout_seconds: float = 300.0
    cancel_poll_interval: float = 1.0
    job_retention_days: int = 30
    # Bearer token required by the scheduled collection endpoint when set
    cron_secret: Optional[str] = None

    # Curation defaults (overridable per tenant)
    relevance_threshold: float = 6.0
    similarity_threshold: float = 0.85
    similarity_window: int = 300
    max_age_days: int = 7

    # Curation pipeline
    fetch_timeout: int = 30
    fetch_concurrency: int = 4
    min_content_length: int = 100
    max_content_length: int = 2000
    scoring_max_retries: int = 3
    scoring_retry_base_delay: float = 1.0
    default_score: float = 5.0
    default_category: str = "General"

    # Progress stream Configuration
    stream_heartbeat_interval: int = 15
    ws_heartbeat_interval: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
