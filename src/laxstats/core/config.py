"""
Configuration management for laxstats.

Uses Pydantic settings for type-safe configuration with environment variable support.
All settings can be overridden via environment variables or a local .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Every field maps to the upper-cased environment variable of the same name,
    e.g. PLL_GRAPHQL_TOKEN or BOX_SCORE_TOLERANCE.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ==========================================================================
    # Logging
    # ==========================================================================
    log_level: str = Field(default="INFO", description="Root log level for the CLI")

    # ==========================================================================
    # Database Configuration
    # ==========================================================================
    database_url: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection string for the canonical store",
    )
    database_pool_size: int = Field(default=10, ge=1, le=50)

    # ==========================================================================
    # Source Credentials (refreshed externally)
    # ==========================================================================
    pll_graphql_token: Optional[str] = Field(default=None, description="PLL stats GraphQL bearer token")
    nll_api_key: Optional[str] = Field(default=None, description="NLL stats API key")
    wla_api_token: Optional[str] = Field(default=None, description="WLA stats feed token")

    # ==========================================================================
    # Source Throttles
    # ==========================================================================
    pll_requests_per_minute: int = Field(default=60, ge=1)
    nll_requests_per_minute: int = Field(default=120, ge=1)
    wla_requests_per_minute: int = Field(default=30, ge=1)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    batch_size: int = Field(default=100, ge=1, le=1000)

    @computed_field
    @property
    def requests_per_minute(self) -> dict[str, int]:
        """Per-source throttle keyed by source id."""
        return {
            "PLL": self.pll_requests_per_minute,
            "NLL": self.nll_requests_per_minute,
            "WLA": self.wla_requests_per_minute,
        }

    # ==========================================================================
    # Retry Policy
    # ==========================================================================
    max_fetch_attempts: int = Field(default=5, ge=1, description="Attempts per fetch before a source is degraded")
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_max_seconds: float = Field(default=60.0, ge=0)

    # ==========================================================================
    # Aggregation
    # ==========================================================================
    box_score_tolerance: int = Field(
        default=0,
        ge=0,
        description="Allowed per-game difference between event totals and box scores",
    )
    leaderboard_max_limit: int = Field(default=100, ge=1)

    # ==========================================================================
    # Scheduling
    # ==========================================================================
    poll_interval_seconds: float = Field(default=300.0, ge=0)
    current_season: int = 2026


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
