from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Census data API
    census_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ZIP_INSIGHTS_CENSUS_API_KEY", "CENSUS_API_KEY"),
    )
    census_base_url: str = "https://api.census.gov/data"
    census_year: str = "2022"
    census_dataset: str = "acs/acs5"
    request_timeout_s: float = 30.0

    # Retries
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 30.0
    rate_limit_cooldown_s: float = 0.0

    # Batching / throttling
    batch_size: int = Field(default=10, ge=1)
    requests_per_minute: int = Field(default=50, ge=1)
    rate_limit_slack_s: float = 0.1

    # Cache
    cache_path: Path = Path(".cache/acs_cache.duckdb")
    cache_version: str = "1.0"
    cache_ttl_days: float = 30.0
    cache_max_bytes: Optional[int] = 50 * 1024 * 1024
    cache_evict_count: int = 20

    model_config = SettingsConfigDict(
        env_prefix="ZIP_INSIGHTS_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
