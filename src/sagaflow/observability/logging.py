"""
Structured logging for sagaflow engines with trace ID support.
"""

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

# Context variable for trace ID propagation
trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)

# Global logger cache
_loggers: dict[str, "StructuredLogger"] = {}

# LogRecord attributes that must not be overwritten through ``extra``
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
    }
)

_FORMATTER_SKIP = _RESERVED_ATTRS | {"trace_id", "op", "ms", "duration_ms"}


@runtime_checkable
class LoggerSink(Protocol):
    """Minimal leveled sink the engines write to.

    ``StructuredLogger`` and ``logging.Logger`` both satisfy it.
    """

    def debug(self, msg: str, *args, **kwargs) -> None: ...

    def info(self, msg: str, *args, **kwargs) -> None: ...

    def warning(self, msg: str, *args, **kwargs) -> None: ...

    def error(self, msg: str, *args, **kwargs) -> None: ...


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured logs with trace ID support."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = trace_id_ctx.get() or getattr(record, "trace_id", None) or "-"

        parts = record.name.split(".")
        mod = parts[-1] if parts else record.name
        op = getattr(record, "op", getattr(record, "funcName", "-"))

        duration = getattr(record, "ms", getattr(record, "duration_ms", None))
        ms_part = f" ms={duration:.1f}" if duration is not None else ""

        timestamp = datetime.now(UTC).isoformat()
        level = record.levelname
        msg = record.getMessage()

        extra_fields = ""
        for key, value in getattr(record, "__dict__", {}).items():
            if key not in _FORMATTER_SKIP:
                extra_fields += f" {key}={value}"

        line = f't={timestamp} level={level} trace={trace_id} mod={mod} op={op}{ms_part} msg="{msg}"{extra_fields}'
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """Structured logger with trace ID and operation support."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, *args, exc_info=None, **kwargs):
        extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_ATTRS}
        extra["trace_id"] = trace_id_ctx.get()
        self.logger.log(level, msg, *args, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._log(logging.CRITICAL, msg, *args, **kwargs)

    def timed(self, msg: str, duration_ms: float, **kwargs):
        """Log with timing information."""
        kwargs["ms"] = duration_ms
        self.info(msg, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration with structured formatter."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    logging.getLogger("opentelemetry").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def set_trace_id(trace_id: str) -> None:
    """Set trace ID in current context."""
    trace_id_ctx.set(trace_id)


def get_trace_id() -> str | None:
    """Get current trace ID from context."""
    return trace_id_ctx.get()


def clear_trace_id() -> None:
    """Clear trace ID from current context."""
    trace_id_ctx.set(None)

