"""Configuration and settings for the pull_lists package.

Centralizes environment-variable based configuration using Pydantic
for type safety and discoverability.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from ``PULL_LISTS_*`` environment variables.

    Defaults mirror the limits the upstream account tolerates; override
    them per deployment rather than in code.
    """

    model_config = SettingsConfigDict(
        env_prefix="PULL_LISTS_",
        env_file=".env.local",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # DealMachine v2 REST base; every operation is a POST below this path.
    api_base_url: str = Field("https://api.dealmachine.com/v2")

    leads_per_page: int = Field(100, ge=1)
    max_concurrency: int = Field(50, ge=1)

    poll_interval_seconds: float = Field(5.0, gt=0)
    build_timeout_seconds: float = Field(60 * 60, gt=0)
    delete_timeout_seconds: float = Field(30 * 60, gt=0)

    # None means no per-request timeout; only the poll loops are bounded.
    http_timeout_seconds: Optional[float] = Field(None)
    body_excerpt_chars: int = Field(500, ge=0)

    log_level: str = Field("INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Using an accessor keeps imports cheap and avoids repeated parsing.
    """

    return Settings()
