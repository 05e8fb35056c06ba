"""Configuration management with validation."""

from .settings import ObservabilityConfig, PipelineConfig, SagaConfig, Settings, get_settings

__all__ = ["Settings", "SagaConfig", "PipelineConfig", "ObservabilityConfig", "get_settings"]
