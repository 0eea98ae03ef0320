"""
Affinity Engine — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the practice affinity engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_ECHO: bool = False

    # ------------------------------------------------------------------ #
    # Redis cache
    # ------------------------------------------------------------------ #
    REDIS_URL: str
    CACHE_PREFIX: str = "apr"
    CACHE_TTL_PERSON_AFFINITY: int = 7200   # individual affinity: long
    CACHE_TTL_TEAM: int = 900               # team affinity & dashboards: medium
    CACHE_TTL_RECOMMENDATIONS: int = 600    # recommendation lists: short

    # ------------------------------------------------------------------ #
    # Affinity & recommendation tuning
    # ------------------------------------------------------------------ #
    AFFINITY_NEUTRAL_SCORE: int = 50
    DEFAULT_MIN_AFFINITY_THRESHOLD: float = 60.0
    DEFAULT_MIN_IMPROVEMENT: float = 10.0
    LOW_INDIVIDUAL_AFFINITY: int = 30

    # "sync" recalculates inside the survey request, "deferred" queues it
    RECALCULATION_MODE: Literal["sync", "deferred"] = "sync"

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator(
        "AFFINITY_NEUTRAL_SCORE",
        "DEFAULT_MIN_AFFINITY_THRESHOLD",
        "LOW_INDIVIDUAL_AFFINITY",
    )
    @classmethod
    def _score_must_be_between_0_and_100(cls, v: float) -> float:
        if not 0 <= v <= 100:
            raise ValueError(f"Affinity score must be between 0 and 100, got {v}")
        return v

    @field_validator(
        "CACHE_TTL_PERSON_AFFINITY",
        "CACHE_TTL_TEAM",
        "CACHE_TTL_RECOMMENDATIONS",
    )
    @classmethod
    def _ttl_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Cache TTL must be positive, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from affinity_engine.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
