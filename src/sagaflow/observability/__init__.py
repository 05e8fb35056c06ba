"""
Observability for sagaflow engines.

Core Components:
- Structured Logging: single-line records with trace IDs (``t=... trace=... msg="..."``)
- Metrics: OpenTelemetry counters and histograms for steps, retries,
  compensations and saga runs, plus in-process aggregates
- Tracing: OpenTelemetry spans around saga runs and pipeline steps

Usage:
    >>> from sagaflow.observability import get_logger, setup_logging
    >>> setup_logging("DEBUG")
    >>> logger = get_logger(__name__)
    >>> logger.info("Checkout saga started", order_id="A-17")

Configuration:
    - SAGAFLOW_OBSERVABILITY__LOG_LEVEL=INFO
    - SAGAFLOW_OBSERVABILITY__ENABLE_TRACING=true
    - SAGAFLOW_OBSERVABILITY__ENABLE_METRICS=true
"""

from .logging import LoggerSink, StructuredLogger, get_logger, setup_logging
from .metrics import MetricsCollector, get_engine_metrics, get_metrics_collector, setup_metrics
from .tracing import TracingManager, get_tracing_manager, setup_tracing, trace_span

__all__ = [
    "LoggerSink",
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    "MetricsCollector",
    "get_metrics_collector",
    "get_engine_metrics",
    "setup_metrics",
    "TracingManager",
    "get_tracing_manager",
    "setup_tracing",
    "trace_span",
]
