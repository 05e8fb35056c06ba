"""
OpenTelemetry tracing integration for workflow runs.

Every saga run and pipeline step can be wrapped in a span; failures are
recorded on the span and the span's trace ID is pushed into the logging
context so log lines and traces correlate.
"""

import functools
import inspect
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter
from opentelemetry.trace import NoOpTracer, Span, Status, StatusCode

from .logging import get_logger, set_trace_id

logger = get_logger(__name__)


class TracingManager:
    """Manages OpenTelemetry tracing configuration and utilities."""

    def __init__(self, service_name: str = "sagaflow", service_version: str = "1.0.0"):
        self.service_name = service_name
        self.service_version = service_version
        self.tracer_provider: TracerProvider | None = None
        self.tracer: trace.Tracer | None = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, exporter: SpanExporter | None = None, set_global: bool = False) -> None:
        """Initialize a tracer provider, optionally exporting finished spans."""
        if self._initialized:
            return

        resource = Resource.create(
            {
                "service.name": self.service_name,
                "service.version": self.service_version,
            }
        )
        self.tracer_provider = TracerProvider(resource=resource)
        if exporter is not None:
            self.tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))
        if set_global:
            trace.set_tracer_provider(self.tracer_provider)

        self.tracer = self.tracer_provider.get_tracer(self.service_name, self.service_version)
        self._initialized = True
        logger.debug(f"Tracing initialized for service '{self.service_name}'")

    def disable(self) -> None:
        """Route all spans to a no-op tracer."""
        self.tracer = NoOpTracer()
        self._initialized = True

    def start_span(self, name: str, attributes: dict[str, Any] | None = None) -> Span:
        """Start a new span with optional attributes."""
        if self.tracer is None:
            raise RuntimeError("Tracer not initialized. Call initialize() first.")
        span = self.tracer.start_span(name, kind=trace.SpanKind.INTERNAL)

        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, str(value))

        span_context = span.get_span_context()
        if span_context.is_valid:
            set_trace_id(format(span_context.trace_id, "032x"))

        return span

    @contextmanager
    def span(self, name: str, attributes: dict[str, Any] | None = None):
        """Context manager for creating spans."""
        span = self.start_span(name, attributes)
        try:
            with trace.use_span(
                span, end_on_exit=False, record_exception=False, set_status_on_exception=False
            ):
                yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
        finally:
            span.end()

    def shutdown(self) -> None:
        """Flush and shut down the tracer provider."""
        if self.tracer_provider:
            self.tracer_provider.shutdown()
        self.tracer_provider = None
        self.tracer = None
        self._initialized = False


# Global tracing manager
_tracing_manager: TracingManager | None = None


def setup_tracing(
    service_name: str = "sagaflow",
    service_version: str = "1.0.0",
    exporter: SpanExporter | None = None,
    enabled: bool = True,
) -> TracingManager:
    """Setup the global tracing manager."""
    global _tracing_manager
    if _tracing_manager is not None:
        _tracing_manager.shutdown()
    _tracing_manager = TracingManager(service_name, service_version)
    if enabled:
        _tracing_manager.initialize(exporter)
    else:
        _tracing_manager.disable()
    return _tracing_manager


def get_tracing_manager() -> TracingManager:
    """Get global tracing manager, defaulting to a no-op tracer."""
    global _tracing_manager
    if _tracing_manager is None:
        _tracing_manager = TracingManager()
        _tracing_manager.disable()
    return _tracing_manager


def reset_tracing() -> None:
    """Shut down and drop the global tracing manager."""
    global _tracing_manager
    if _tracing_manager is not None:
        _tracing_manager.shutdown()
    _tracing_manager = None


def trace_span(name: str | None = None, attributes: dict[str, Any] | None = None):
    """Decorator for automatic span creation."""

    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"
        span_attributes = {
            "function.name": func.__name__,
            "function.module": func.__module__,
            **(attributes or {}),
        }

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with get_tracing_manager().span(span_name, span_attributes) as span:
                result = await func(*args, **kwargs)
                span.set_status(Status(StatusCode.OK))
                return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with get_tracing_manager().span(span_name, span_attributes) as span:
                result = func(*args, **kwargs)
                span.set_status(Status(StatusCode.OK))
                return result

        return async_wrapper if inspect.iscoroutinefunction(func) else sync_wrapper

    return decorator


def add_span_attributes(**attributes):
    """Add attributes to the current span."""
    current_span = trace.get_current_span()
    if current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, str(value))


def add_span_event(name: str, attributes: dict[str, Any] | None = None):
    """Add an event to the current span."""
    current_span = trace.get_current_span()
    if current_span.is_recording():
        current_span.add_event(name, attributes or {})
