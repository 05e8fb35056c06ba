"""
Global pytest configuration and fixtures for test isolation.

Resets the process-wide observability state and the settings cache so that
metrics, spans and environment overrides never leak between tests.
"""

from unittest.mock import MagicMock

import pytest

from sagaflow.config.settings import PipelineConfig, SagaConfig, Settings, get_settings
from sagaflow.observability.logging import clear_trace_id
from sagaflow.observability.metrics import reset_metrics
from sagaflow.observability.tracing import reset_tracing


def reset_all_global_state():
    """Reset global collectors, tracing, trace IDs and cached settings."""
    reset_metrics()
    reset_tracing()
    clear_trace_id()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def test_isolation():
    """Per-test isolation to ensure clean state for each test."""
    reset_all_global_state()
    yield
    reset_all_global_state()


@pytest.fixture
def settings():
    """Default settings independent of the environment."""
    return Settings(saga=SagaConfig(), pipeline=PipelineConfig())


@pytest.fixture
def mock_logger():
    """Logger sink that records every call."""
    return MagicMock()
