"""
Saga orchestration for reversible multi-step business operations.

Steps run strictly in the order they were added. Each step may be attempted
several times; once a step runs out of attempts, every step that already
succeeded in this run is compensated in reverse order and the run ends with a
single ``SagaExecutionException``.

Example:
    >>> saga = SagaOrchestrator("checkout", {"order_id": "A-17"})
    >>> saga.add_step(
    ...     SagaStep("reserve_inventory", reserve, release, retry=2)
    ... ).add_step(SagaStep("charge_payment", charge, refund))
    >>> await saga.run()
    >>> saga.get_step_result("charge_payment")
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Generic, TypeVar

from ..config.settings import Settings, get_settings
from ..observability.logging import LoggerSink, get_logger
from ..observability.metrics import get_metrics_collector
from ..observability.tracing import add_span_attributes, add_span_event, get_tracing_manager
from .exceptions import SagaExecutionException
from .result import Err, Ok, Result, ResultError, failure, failure_from_exception

TContext = TypeVar("TContext")
TResult = TypeVar("TResult")


@dataclass
class SagaContext(Generic[TContext]):
    """State owned by one orchestrator: caller payload plus step results."""

    context: TContext
    is_success: bool = False
    results: dict[str, Any] = field(default_factory=dict)


SagaAction = Callable[[SagaContext[TContext]], Awaitable[Result[TResult]]]
SagaCompensation = Callable[[SagaContext[TContext]], Awaitable[None]]
SagaErrorHook = Callable[[ResultError, SagaContext[TContext]], Awaitable[None]]


@dataclass
class SagaStep(Generic[TContext, TResult]):
    """A labelled unit of work paired with the action that undoes it.

    ``retry`` is the total number of attempts (``None`` uses the configured
    default) and ``delay`` the pause in seconds between attempts (``None`` uses
    the configured ``retry_delay``).
    """

    label: str
    action: SagaAction
    compensate: SagaCompensation
    on_error: SagaErrorHook | None = None
    retry: int | None = None
    delay: float | None = None

    def __post_init__(self):
        if not self.label:
            raise ValueError("Saga step label must be a non-empty string")
        if self.retry is not None and self.retry < 1:
            raise ValueError(f"Saga step '{self.label}' retry must be >= 1, got {self.retry}")
        if self.delay is not None and self.delay < 0:
            raise ValueError(f"Saga step '{self.label}' delay must be >= 0, got {self.delay}")


class SagaOrchestrator(Generic[TContext]):
    """Runs saga steps in order with retry and reverse-order compensation."""

    def __init__(
        self,
        name: str,
        initial_context: TContext,
        logger: LoggerSink | None = None,
        *,
        settings: Settings | None = None,
    ):
        self.name = name
        self.logger = logger or get_logger(__name__)
        self.settings = settings or get_settings()
        self._steps: list[SagaStep[TContext, Any]] = []
        self._ctx: SagaContext[TContext] = SagaContext(context=initial_context)

    def add_step(self, step: SagaStep[TContext, Any]) -> "SagaOrchestrator[TContext]":
        """Append a step; returns the orchestrator for chaining."""
        if any(existing.label == step.label for existing in self._steps):
            raise ValueError(f"Duplicate step label '{step.label}' in saga '{self.name}'")
        self._steps.append(step)
        return self

    step = add_step

    @property
    def steps(self) -> tuple[SagaStep[TContext, Any], ...]:
        return tuple(self._steps)

    def get_step_result(self, label: str, default: Any = None) -> Any:
        """Return the stored value of a step, or ``default`` if it never succeeded."""
        return self._ctx.results.get(label, default)

    def get_context(self) -> SagaContext[TContext]:
        return self._ctx

    async def run(self, resume_from_label: str | None = None) -> SagaContext[TContext]:
        """Execute the saga, optionally starting at ``resume_from_label``.

        A label that matches no step fails the run unless
        ``settings.saga.strict_resume`` is ``False``, in which case every step runs.

        Raises:
            SagaExecutionException: a step exhausted its attempts (after
                compensation), or the resume label matched no step.
        """
        metrics = get_metrics_collector()
        started = time.perf_counter()
        span_attributes = {
            "saga.name": self.name,
            "saga.steps": len(self._steps),
            "saga.resume_from": resume_from_label or "-",
        }

        with get_tracing_manager().span("saga.run", span_attributes):
            self._ctx.is_success = False
            self.logger.info(f"[{self.name}] Starting saga run")
            try:
                start = self._resolve_start(resume_from_label)
                executed: list[SagaStep[TContext, Any]] = []
                for saga_step in self._steps[start:]:
                    await self._execute_step(saga_step, executed)
            except Exception:
                metrics.record_run(self.name, time.perf_counter() - started, False)
                raise

            self._ctx.is_success = True
            add_span_attributes(**{"saga.executed_steps": len(executed)})
            metrics.record_run(self.name, time.perf_counter() - started, True)
            self.logger.info(f"[{self.name}] Saga completed successfully")
            return self._ctx

    def _resolve_start(self, resume_from_label: str | None) -> int:
        if resume_from_label is None:
            return 0

        for index, saga_step in enumerate(self._steps):
            if saga_step.label == resume_from_label:
                self.logger.info(
                    f'[{self.name}] Resuming from step "{resume_from_label}", '
                    f"skipping {index} step(s)"
                )
                return index

        if self.settings.saga.strict_resume:
            message = f"Resume label '{resume_from_label}' does not match any step of saga '{self.name}'"
            self.logger.error(f"[{self.name}] {message}")
            raise SagaExecutionException(
                resume_from_label, HTTPStatus.BAD_REQUEST, message, is_compensated=True
            )

        self.logger.warning(
            f'[{self.name}] Resume label "{resume_from_label}" not found, running all steps'
        )
        return 0

    async def _execute_step(
        self, saga_step: SagaStep[TContext, Any], executed: list[SagaStep[TContext, Any]]
    ) -> None:
        metrics = get_metrics_collector()
        max_attempts = saga_step.retry or self.settings.saga.default_retry
        delay = saga_step.delay if saga_step.delay is not None else self.settings.saga.retry_delay

        for attempt in range(1, max_attempts + 1):
            self.logger.debug(
                f'[{self.name}] Step "{saga_step.label}" attempt {attempt}/{max_attempts}'
            )
            started = time.perf_counter()
            outcome = await self._invoke(saga_step)
            metrics.record_step(
                "saga",
                self.name,
                saga_step.label,
                time.perf_counter() - started,
                isinstance(outcome, Ok),
            )

            match outcome:
                case Ok(value):
                    self.logger.debug(f'[{self.name}] Step "{saga_step.label}" succeeded')
                    self._ctx.results[saga_step.label] = value
                    executed.append(saga_step)
                    return

                case Err(error):
                    self.logger.warning(
                        f'[{self.name}] Step "{saga_step.label}" failed: {error.message}'
                    )
                    await self._run_error_hook(saga_step, error)

                    if attempt >= max_attempts:
                        self.logger.error(
                            f'[{self.name}] "{saga_step.label}" failed after {max_attempts} '
                            f"attempts. Starting compensation..."
                        )
                        all_compensated, failed_labels = await self._compensate(executed)
                        add_span_attributes(
                            **{
                                "saga.failed_step": saga_step.label,
                                "saga.is_compensated": all_compensated,
                            }
                        )
                        raise SagaExecutionException(
                            saga_step.label,
                            error.status_code or HTTPStatus.INTERNAL_SERVER_ERROR,
                            error.message,
                            all_compensated,
                            error.stack_trace,
                            failed_labels,
                        )

                    metrics.record_retry(self.name, saga_step.label, attempt)
                    add_span_event(
                        "saga.retry",
                        {"saga.step": saga_step.label, "saga.attempt": attempt, "error": error.message},
                    )
                    self.logger.info(
                        f'[{self.name}] Retrying "{saga_step.label}" ({attempt}/{max_attempts})'
                    )
                    if delay > 0:
                        await asyncio.sleep(delay)

    async def _invoke(self, saga_step: SagaStep[TContext, Any]) -> Result[Any]:
        """Run a step action; a raised exception counts as a failed attempt."""
        try:
            outcome = await saga_step.action(self._ctx)
        except Exception as ex:
            self.logger.error(f'[{self.name}] Unexpected error in "{saga_step.label}": {ex}')
            return failure_from_exception(ex)

        if not isinstance(outcome, (Ok, Err)):
            return failure(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"Step {saga_step.label} returned no outcome",
            )
        return outcome

    async def _run_error_hook(self, saga_step: SagaStep[TContext, Any], error: ResultError) -> None:
        if saga_step.on_error is None:
            return
        try:
            await saga_step.on_error(error, self._ctx)
        except Exception as ex:
            self.logger.error(
                f'[{self.name}] Error hook of "{saga_step.label}" raised, aborting saga: {ex}'
            )
            raise

    async def _compensate(
        self, executed: list[SagaStep[TContext, Any]]
    ) -> tuple[bool, tuple[str, ...]]:
        """Undo executed steps newest first; keeps going when an undo raises."""
        metrics = get_metrics_collector()
        failed_labels: list[str] = []
        self.logger.info(f"[{self.name}] Compensating {len(executed)} executed step(s)")

        for executed_step in reversed(executed):
            try:
                await executed_step.compensate(self._ctx)
            except Exception as ex:
                failed_labels.append(executed_step.label)
                metrics.record_compensation(self.name, executed_step.label, False)
                add_span_event(
                    "saga.compensation",
                    {"saga.step": executed_step.label, "success": False, "error": str(ex)},
                )
                self.logger.error(
                    f'[{self.name}] Compensation failed for "{executed_step.label}": {ex}'
                )
                continue

            metrics.record_compensation(self.name, executed_step.label, True)
            add_span_event("saga.compensation", {"saga.step": executed_step.label, "success": True})
            self.logger.info(f'[{self.name}] Compensated "{executed_step.label}"')

        return not failed_labels, tuple(failed_labels)
