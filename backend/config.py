"""Application configuration management."""

from functools import lru_cache
from typing import List, Optional
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "Crew Network Engine"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # API
    API_V1_STR: str = "/api/v1"
    ALLOWED_HOSTS: List[str] = ["*"]

    # Database
    DATABASE_URL: str = "sqlite:///./crew_network.db"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # OpenAI (narrative summaries only)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-3.5-turbo"
    OPENAI_TIMEOUT: int = 20
    OPENAI_MAX_RETRIES: int = 2

    # Celery, falling back to REDIS_URL
    CELERY_BROKER_URL: str = Field(
        "redis://localhost:6379/0",
        validation_alias=AliasChoices("CELERY_BROKER_URL", "REDIS_URL"),
    )
    CELERY_RESULT_BACKEND: str = Field(
        "redis://localhost:6379/0",
        validation_alias=AliasChoices("CELERY_RESULT_BACKEND", "REDIS_URL"),
    )

    # Relationship discovery
    DISCOVERY_CONFIDENCE_FLOOR: float = 0.3
    DISCOVERY_PAIR_CEILING: int = 2000
    DISCOVERY_CHUNK_SIZE: int = 100

    # Contact scoring
    SCORING_CHUNK_SIZE: int = 50

    # Opportunity generation
    RECONNECTION_STALE_DAYS: int = 90
    INTRODUCTION_MIN_STRENGTH: float = 0.6
    CLUSTER_MIN_SIZE: int = 3
    ACCOUNT_INTERESTS: List[str] = []

    # Batch locking
    ACCOUNT_LOCK_TTL_SECONDS: int = 1800

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
