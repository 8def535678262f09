"""
Configuration management for the CI guardian patch engine
"""

import os
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Unknown GUARDIAN_* variables are ignored so shared .env files keep working
    model_config = SettingsConfigDict(
        env_prefix="GUARDIAN_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )
    app_name: str = "ci-guardian"

    log_level: str = "INFO"
    log_json: bool = False

    # Confidence-gap resolution
    confidence_gap_threshold: float = 0.15  # top1 - top2 below this is ambiguous
    step_alignment_bonus: float = 0.05  # added to hypotheses matching the failing step

    # Abstain policy: None keeps weak signals advisory only
    weak_signal_abstain_count: Optional[int] = None

    # Generator configuration
    openai_api_key: Optional[str] = None
    generator_model: str = "gpt-4o"
    generator_timeout_seconds: float = 90.0
    generator_max_attempts: int = 2
    rate_limit_cooldown_seconds: float = 60.0
    timeout_cooldown_seconds: float = 5.0

    # Patch spectrum
    max_strategies: int = 3
    max_concurrent_reviews: int = 3
    guard_rules_path: Optional[str] = None

    # Artifacts
    output_dir: str = Field(default=".guardian")

    @field_validator("confidence_gap_threshold", "step_alignment_bonus")
    @classmethod
    def validate_unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be within [0, 1]")
        return value

    @field_validator("generator_max_attempts", "max_strategies", "max_concurrent_reviews")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("weak_signal_abstain_count")
    @classmethod
    def validate_weak_count(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 1:
            raise ValueError("weak_signal_abstain_count must be at least 1 when set")
        return value

    @model_validator(mode="after")
    def fill_api_key(self) -> "Settings":
        # Fall back to the conventional OpenAI variable
        if not self.openai_api_key:
            self.openai_api_key = os.environ.get("OPENAI_API_KEY") or None
        return self


settings = Settings()


def get_settings() -> Settings:
    """Get the current settings instance (for dependency injection)."""
    return settings
