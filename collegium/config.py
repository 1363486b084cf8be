"""
Platform configuration from environment variables.

Every field can be set as COLLEGIUM_<FIELD> in the environment or in a
.env file. get_settings() caches a single instance per process.
"""

from decimal import Decimal
from functools import lru_cache
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Collegium settings."""

    model_config = SettingsConfigDict(env_prefix="COLLEGIUM_", env_file=".env", case_sensitive=False)

    # Store
    store_backend: Literal["memory", "sqlite"] = "memory"
    database_path: str = "collegium.db"
    store_timeout_seconds: float = Field(5.0, gt=0)

    # Concurrency
    lock_timeout_seconds: float = Field(5.0, gt=0)
    max_retries: int = Field(3, ge=0)
    retry_backoff_seconds: float = Field(0.05, ge=0)

    # Rules
    passing_score: Decimal = Field(Decimal(50), ge=0, le=100)
    hot_section_threshold_pct: Decimal = Field(Decimal(90), ge=0, le=100)

    # API
    cors_origins: List[str] = ["*"]

    # Observability
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    @field_validator("store_backend", "log_format", mode="before")
    @classmethod
    def lowercase(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return level


@lru_cache
def get_settings() -> Settings:
    return Settings()
