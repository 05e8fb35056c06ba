"""
Configuration for sagaflow engines with Pydantic Settings and validation.

Every section can be overridden from the environment, e.g.
``SAGAFLOW_SAGA__RETRY_DELAY=0.5`` or ``SAGAFLOW_OBSERVABILITY__LOG_LEVEL=DEBUG``.
"""

from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SagaConfig(BaseModel):
    """Defaults applied by the saga orchestrator."""

    default_retry: int = Field(1, ge=1, description="Attempts per step when a step sets none")
    retry_delay: float = Field(0.0, ge=0.0, description="Seconds to wait between attempts")
    strict_resume: bool = Field(
        True, description="Fail the run when the resume label matches no step"
    )


class PipelineConfig(BaseModel):
    """Behaviour of the pipeline workflow."""

    reject_empty_results: bool = Field(
        True, description="Treat a successful step that returns None as a failure"
    )


class ObservabilityConfig(BaseModel):
    """Configuration for logging, metrics and tracing."""

    enable_tracing: bool = Field(True)
    enable_metrics: bool = Field(True)
    log_level: str = Field("INFO")
    service_name: str = Field("sagaflow")
    service_version: str = Field("1.0.0")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


class Settings(BaseSettings):
    """Main settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="SAGAFLOW_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    saga: SagaConfig = Field(default_factory=SagaConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    environment: str = Field(
        "development", description="Environment: development, staging, production"
    )
    debug: bool = Field(False, description="Force DEBUG logging regardless of log_level")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
