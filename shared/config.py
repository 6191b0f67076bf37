"""
Shared configuration management for the Eligibility engine.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EligibilityConfig(BaseSettings):
    """Engine and cache settings read from ELIGIBILITY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ELIGIBILITY_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Logging
    log_level: str = Field(default="info")

    # Cache backend: "memory" or "redis"
    cache_backend: str = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Scoring defaults (overridable per criteria)
    pass_threshold: float = Field(default=65.0, ge=0)
    scoring_method: str = Field(default="weighted")
    default_decision: str = Field(default="Rejected")

    # Evaluation cache
    evaluation_cache_enabled: bool = Field(default=True)
    evaluation_cache_ttl: int = Field(default=3600, ge=1)
    cache_prefix: str = Field(default="eligibility_eval")

    # Batch evaluation
    batch_size: int = Field(default=100, ge=1)
    batch_concurrency: int = Field(default=4, ge=1)

    # Input validation
    validate_input: bool = Field(default=True)
    max_field_length: int = Field(default=255, ge=1)
    max_value_length: int = Field(default=1000, ge=1)


def get_config(**overrides) -> EligibilityConfig:
    """Get engine configuration, applying explicit overrides over the environment."""
    return EligibilityConfig(**overrides)


def resolve_config(config: Optional[EligibilityConfig] = None) -> EligibilityConfig:
    """Return the given config or load one from the environment."""
    return config if config is not None else get_config()
