"""
Engine metrics on top of the OpenTelemetry metrics API.

Counts step outcomes, retries, compensations and whole runs for both the saga
orchestrator and the pipeline workflow, and keeps in-process aggregates that
can be inspected without an exporter.
"""

from collections import defaultdict
from typing import Any

from opentelemetry.metrics import Counter as OTelCounter
from opentelemetry.metrics import Histogram, Meter, NoOpMeter

METRIC_PREFIX = "sagaflow"


class MetricsCollector:
    """Centralized metrics collection for workflow engines."""

    def __init__(self, meter: Meter, enabled: bool = True):
        self.meter = meter
        self.enabled = enabled
        self._counters: dict[str, OTelCounter] = {}
        self._histograms: dict[str, Histogram] = {}

        # (engine, workflow) -> aggregate counts
        self._step_calls = defaultdict(int)
        self._step_failures = defaultdict(int)
        self._retries = defaultdict(int)
        self._compensations = defaultdict(int)
        self._compensation_failures = defaultdict(int)
        self._runs = defaultdict(int)
        self._run_successes = defaultdict(int)

        self._setup_default_metrics()

    def _setup_default_metrics(self):
        """Setup default engine metrics."""
        self.counter("steps_total", "Total number of step attempts")
        self.counter("step_failures_total", "Total number of failed step attempts")
        self.counter("step_retries_total", "Total number of step retries")
        self.counter("compensations_total", "Total number of compensating actions run")
        self.counter("compensation_failures_total", "Total number of compensations that raised")
        self.counter("runs_total", "Total number of saga runs")
        self.histogram("step_duration_seconds", "Step attempt duration", "s")
        self.histogram("run_duration_seconds", "Saga run duration", "s")

    def counter(self, name: str, description: str = "", unit: str = "1") -> OTelCounter:
        """Get or create a counter metric."""
        if name not in self._counters:
            self._counters[name] = self.meter.create_counter(
                f"{METRIC_PREFIX}_{name}", description=description, unit=unit
            )
        return self._counters[name]

    def histogram(self, name: str, description: str = "", unit: str = "1") -> Histogram:
        """Get or create a histogram metric."""
        if name not in self._histograms:
            self._histograms[name] = self.meter.create_histogram(
                f"{METRIC_PREFIX}_{name}", description=description, unit=unit
            )
        return self._histograms[name]

    def record_step(self, engine: str, workflow: str, step: str, duration: float, success: bool):
        """Record one step attempt."""
        if not self.enabled:
            return
        attributes = {"engine": engine, "workflow": workflow, "step": step}

        self._counters["steps_total"].add(1, attributes)
        if not success:
            self._counters["step_failures_total"].add(1, attributes)
        self._histograms["step_duration_seconds"].record(duration, attributes)

        self._step_calls[(engine, workflow)] += 1
        if not success:
            self._step_failures[(engine, workflow)] += 1

    def record_retry(self, workflow: str, step: str, attempt: int):
        """Record a saga step retry."""
        if not self.enabled:
            return
        self._counters["step_retries_total"].add(
            1, {"engine": "saga", "workflow": workflow, "step": step, "attempt": str(attempt)}
        )
        self._retries[("saga", workflow)] += 1

    def record_compensation(self, workflow: str, step: str, success: bool):
        """Record a compensating action outcome."""
        if not self.enabled:
            return
        attributes = {"engine": "saga", "workflow": workflow, "step": step}
        self._counters["compensations_total"].add(1, attributes)
        self._compensations[("saga", workflow)] += 1
        if not success:
            self._counters["compensation_failures_total"].add(1, attributes)
            self._compensation_failures[("saga", workflow)] += 1

    def record_run(self, workflow: str, duration: float, success: bool):
        """Record a complete saga run."""
        if not self.enabled:
            return
        attributes = {"engine": "saga", "workflow": workflow, "success": str(success).lower()}
        self._counters["runs_total"].add(1, attributes)
        self._histograms["run_duration_seconds"].record(duration, attributes)
        self._runs[("saga", workflow)] += 1
        if success:
            self._run_successes[("saga", workflow)] += 1

    def get_engine_metrics(self) -> dict[str, Any]:
        """Get aggregated per-workflow metrics."""
        keys = set(self._step_calls) | set(self._runs) | set(self._compensations)
        metrics_data = {}

        for engine, workflow in sorted(keys):
            calls = self._step_calls[(engine, workflow)]
            failures = self._step_failures[(engine, workflow)]
            runs = self._runs[(engine, workflow)]

            metrics_data[f"{engine}_{workflow}"] = {
                "step_calls": calls,
                "step_failures": failures,
                "step_success_rate": (calls - failures) / calls if calls > 0 else 0,
                "retries": self._retries[(engine, workflow)],
                "compensations": self._compensations[(engine, workflow)],
                "compensation_failures": self._compensation_failures[(engine, workflow)],
                "runs": runs,
                "run_success_rate": self._run_successes[(engine, workflow)] / runs if runs else 0,
            }

        return metrics_data


# Global metrics collector instance
_metrics_collector: MetricsCollector | None = None


def setup_metrics(meter: Meter, enabled: bool = True) -> MetricsCollector:
    """Setup global metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter, enabled=enabled)
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector, creating a no-op backed one if unset."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(NoOpMeter(METRIC_PREFIX))
    return _metrics_collector


def reset_metrics() -> None:
    """Drop the global collector (used between test runs)."""
    global _metrics_collector
    _metrics_collector = None


def get_engine_metrics() -> dict[str, Any]:
    """Get aggregated metrics from the global collector."""
    return get_metrics_collector().get_engine_metrics()

