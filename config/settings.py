"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Snapshot store
    store_backend: str = "sql"  # "sql" or "memory"
    database_url: str = "sqlite:///./scorecache.db"

    # ESPN public site API (no key required)
    espn_base_url: str = "https://site.api.espn.com/apis/site/v2/sports"
    espn_v2_base_url: str = "https://site.api.espn.com/apis/v2/sports"
    espn_v3_base_url: str = "https://site.api.espn.com/apis/site/v3/sports"  # Stat leaders
    espn_athlete_base_url: str = "https://site.web.api.espn.com/apis/common/v3/sports"  # Player bio/stats

    # Upstream calls
    upstream_timeout_seconds: float = Field(10.0, gt=0)
    aggregate_workers: int = Field(8, ge=1)

    # Freshness
    default_max_age_seconds: int = Field(300, gt=0)
    # JSON, e.g. {"game": {"in_progress": 30}, "standings": {"static": 600}}
    policy_overrides: Optional[str] = None

    # Duplicate-call memo
    coalesce_enabled: bool = True
    coalesce_memo_seconds: float = 2.0

    # Background snapshot writes
    backfill_workers: int = Field(4, ge=1)

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
