"""
Configuration management using pydantic-settings.
All settings loaded from environment variables or a local .env file.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for the FinOps pipeline and its CLI."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Pipeline
    default_profile: str = Field(
        default="jobforge", description="Threshold profile used when none is requested"
    )
    stable_output: bool = Field(
        default=False, description="Freeze wall-clock timestamps to the stable sentinel"
    )
    output_dir: str = Field(default="./output", description="Artifact output directory")
    max_input_bytes: int = Field(
        default=10 * 1024 * 1024, ge=1, description="Maximum size of a JSON input file"
    )

    # Development
    dev_mode: bool = Field(default=False, description="Development mode")

    @field_validator("log_format")
    @classmethod
    def normalize_log_format(cls, v: str) -> str:
        """Accept json|console in any case."""
        value = v.strip().lower()
        if value not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return value


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
