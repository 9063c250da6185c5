"""
Configuration management for Sheet Grader.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
The completion API key is optional here so that storage-only commands work without it;
its absence is reported when the first completion is attempted.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are validated at startup. Invalid values
    will raise clear validation errors.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Completion API Configuration
    # ==========================================================================
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the multimodal completion service",
    )

    openai_base_url: str | None = Field(
        default=None,
        description="Override for an OpenAI-compatible endpoint",
    )

    openai_model: str = Field(
        default="gpt-4o",
        description="Vision-capable model used for grading",
    )

    max_output_tokens: int = Field(
        default=2000,
        ge=1,
        description="Token budget for a single grading completion",
    )

    llm_temperature: float | None = Field(
        default=None,
        ge=0.0,
        le=2.0,
        description="Sampling temperature; service default when unset",
    )

    # ==========================================================================
    # Retry Configuration
    # ==========================================================================
    retry_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first attempt for transient upstream errors",
    )

    retry_base_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Base backoff delay in milliseconds, doubled on every retry",
    )

    # ==========================================================================
    # Storage & Logging Configuration
    # ==========================================================================
    database_url: str = Field(
        default="sqlite:///./sheet_grader.db",
        description="SQLAlchemy URL for grading storage, or memory:// for an in-process store",
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )

    @field_validator("openai_base_url")
    @classmethod
    def validate_base_url(cls, v: str | None) -> str | None:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/") if v else v

    @field_validator("openai_api_key")
    @classmethod
    def blank_key_is_missing(cls, v: str | None) -> str | None:
        """Treat an empty key the same as an unset one."""
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
