"""
Application Configuration

This module provides type-safe configuration loading using Pydantic settings.
Environment variables are loaded from .env file and validated.

Scheduling values defined here are defaults only. The scheduler, selection
policy and queue replenisher never read `settings` directly; they receive a
SchedulerConfig built once via SchedulerConfig.from_settings().

Usage:
    from pattern_recall.config import settings

    # Access settings
    db_url = settings.POSTGRES_URL
    steps = settings.SRS_LEARNING_STEPS_MINUTES
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Pattern Recall"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "patternrecall"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "patternrecall"

    @property
    def POSTGRES_URL(self) -> str:
        """Async PostgreSQL connection URL."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def POSTGRES_URL_SYNC(self) -> str:
        """Sync PostgreSQL connection URL for Alembic migrations."""
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # LLM providers
    OPENAI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""

    # Answer grading (model-agnostic via LiteLLM)
    # Format: provider/model-name
    GRADING_MODEL: str = "openai/gpt-4o"
    GRADING_TEMPERATURE: float = 0.1
    GRADING_MAX_TOKENS: int = 2500
    # Upper bound on a single grading call before the submission is treated as failed
    GRADING_TIMEOUT_SECONDS: float = 30.0

    # Spaced repetition (SM-2 with sub-day learning steps)
    SRS_LEARNING_STEPS_MINUTES: list[int] = Field(default_factory=lambda: [10])
    SRS_GRADUATING_INTERVAL_MINUTES: int = 1440  # "good" graduation: 1 day
    SRS_EASY_INTERVAL_MINUTES: int = 2880  # "easy" graduation: 2 days
    SRS_INITIAL_EASINESS: float = 2.5
    SRS_MIN_EASINESS: float = 1.3
    SRS_HARD_MULTIPLIER: float = 1.2
    SRS_EASY_BONUS: float = 1.3
    SRS_MATURE_INTERVAL_DAYS: int = 21

    # Daily quota
    SRS_DEFAULT_NEW_CARDS_LIMIT: int = 5
    SRS_MAX_NEW_CARDS_LIMIT: int = 100
    # IANA zone defining the learner's calendar day for quota counting
    SRS_TIMEZONE: str = "UTC"

    # Problem catalog
    CATALOG_LOW_WATER_MARK: int = 20

    @field_validator("SRS_LEARNING_STEPS_MINUTES")
    @classmethod
    def _steps_not_empty(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("SRS_LEARNING_STEPS_MINUTES must contain at least one step")
        if any(step <= 0 for step in value):
            raise ValueError("SRS_LEARNING_STEPS_MINUTES must be positive")
        return value


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()


@lru_cache()
def load_yaml_config() -> dict[str, Any]:
    """Load application configuration from config/default.yaml."""
    config_path = Path(__file__).parent.parent.parent.parent / "config" / "default.yaml"

    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


yaml_config: dict[str, Any] = load_yaml_config()
