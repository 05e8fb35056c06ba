"""
Process-level setup of logging, metrics and tracing from ``Settings``.
"""

from opentelemetry.metrics import Meter, NoOpMeter
from opentelemetry.sdk.trace.export import SpanExporter

from .config.settings import Settings, get_settings
from .observability.logging import get_logger, setup_logging
from .observability.metrics import MetricsCollector, setup_metrics
from .observability.tracing import TracingManager, setup_tracing

logger = get_logger(__name__)


def configure_observability(
    settings: Settings | None = None,
    meter: Meter | None = None,
    span_exporter: SpanExporter | None = None,
) -> tuple[MetricsCollector, TracingManager]:
    """Apply the observability section of ``settings`` to the global state."""
    settings = settings or get_settings()
    obs = settings.observability

    log_level = "DEBUG" if settings.debug else obs.log_level
    setup_logging(log_level)

    collector = setup_metrics(meter or NoOpMeter(obs.service_name), enabled=obs.enable_metrics)
    tracing_manager = setup_tracing(
        service_name=obs.service_name,
        service_version=obs.service_version,
        exporter=span_exporter,
        enabled=obs.enable_tracing,
    )

    logger.info(
        f"Observability configured (environment={settings.environment}, "
        f"tracing={obs.enable_tracing}, metrics={obs.enable_metrics}, level={log_level})"
    )
    return collector, tracing_manager
