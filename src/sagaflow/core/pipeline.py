"""
Pipeline workflow: named, non-compensating steps over a shared result context.

Calling code drives the pipeline inline. Each ``step`` awaits one action,
keeps its value under the step name and hands it back; the first failing step
ends the run with a ``PipelineWorkflowException``.

Example:
    >>> workflow = PipelineWorkflow()
    >>> user = await workflow.step("load_user", lambda: repo.get(user_id))
    >>> orders, prefs = await workflow.step_parallel(
    ...     define_parallel_steps(
    ...         define_parallel_step("orders", lambda: orders_api.list(user.id)),
    ...         define_parallel_step("prefs", lambda: prefs_api.get(user.id)),
    ...     )
    ... )
    >>> await workflow.if_else_step(
    ...     "notify",
    ...     lambda ctx: ctx["prefs"].email_enabled,
    ...     send_email,
    ...     send_push,
    ... )
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from http import HTTPStatus
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from ..config.settings import Settings, get_settings
from ..observability.logging import LoggerSink, get_logger
from ..observability.metrics import get_metrics_collector
from ..observability.tracing import get_tracing_manager
from .exceptions import PipelineWorkflowException
from .result import Err, Ok, Result, is_void_result

T = TypeVar("T")

PipelineAction = Callable[[], Awaitable[Result[T]]]


@dataclass(frozen=True)
class StepDefinition(Generic[T]):
    """A named action for ``PipelineWorkflow.step_parallel``."""

    name: str
    action: PipelineAction


def define_parallel_step(name: str, action: PipelineAction) -> StepDefinition:
    return StepDefinition(name=name, action=action)


def define_parallel_steps(*steps: StepDefinition) -> tuple[StepDefinition, ...]:
    return steps


def _as_definitions(steps: Any) -> list[StepDefinition]:
    """Validate ``step_parallel`` input before any action is started."""
    if isinstance(steps, (str, bytes)) or not isinstance(steps, Sequence) or not steps:
        raise PipelineWorkflowException(
            "non-step", False, HTTPStatus.BAD_REQUEST, "Steps must be a non-empty array"
        )

    definitions = []
    for index, entry in enumerate(steps):
        if isinstance(entry, StepDefinition):
            definitions.append(entry)
        elif (
            isinstance(entry, tuple)
            and len(entry) == 2
            and isinstance(entry[0], str)
            and callable(entry[1])
        ):
            definitions.append(StepDefinition(name=entry[0], action=entry[1]))
        else:
            raise PipelineWorkflowException(
                "non-step",
                False,
                HTTPStatus.BAD_REQUEST,
                f"Step at index {index} must be a StepDefinition or a (name, action) pair",
            )
    return definitions


class PipelineWorkflow:
    """Runs pipeline steps and keeps their results for later retrieval."""

    def __init__(
        self,
        logger: LoggerSink | None = None,
        *,
        name: str = "pipeline",
        settings: Settings | None = None,
    ):
        self.name = name
        self.logger = logger or get_logger(__name__)
        self.settings = settings or get_settings()
        self._context: dict[str, Any] = {}

    @property
    def context(self) -> Mapping[str, Any]:
        """Read-only view of the stored step results."""
        return MappingProxyType(self._context)

    async def step(self, name: str, action: PipelineAction) -> Any:
        """Run one step and return its value.

        Raises:
            PipelineWorkflowException: the action failed, raised, returned no
                outcome, or returned an empty value.
        """
        started = time.perf_counter()

        with get_tracing_manager().span("pipeline.step", {"pipeline.step": name}):
            self.logger.info(f"[Pipeline Step:START] step name: {name}")
            try:
                value = await self._run_action(name, action)
            except PipelineWorkflowException as error:
                self._record(name, started, False)
                self.logger.error(
                    f"[Pipeline Step:ERROR] step name: {name} || error message: {error.message}"
                    f" || status code: {error.status_code}"
                )
                raise

        self._record(name, started, True)
        self.logger.info(f"[Pipeline Step:OK] step name: {name}")
        return value

    async def _run_action(self, name: str, action: PipelineAction) -> Any:
        try:
            outcome = await action()
        except PipelineWorkflowException:
            raise
        except Exception as ex:
            raise PipelineWorkflowException(
                name, False, HTTPStatus.INTERNAL_SERVER_ERROR, str(ex)
            ) from ex

        match outcome:
            case Ok(value) if is_void_result(value):
                return value
            case Ok(None) if self.settings.pipeline.reject_empty_results:
                raise PipelineWorkflowException(
                    name, False, HTTPStatus.NO_CONTENT, f"No result found for step {name}"
                )
            case Ok(value):
                self._context[name] = value
                return value
            case Err(error):
                raise PipelineWorkflowException(
                    name,
                    False,
                    error.status_code or HTTPStatus.INTERNAL_SERVER_ERROR,
                    error.message,
                    error.stack_trace,
                )
            case _:
                raise PipelineWorkflowException(
                    name,
                    False,
                    HTTPStatus.NO_CONTENT,
                    f"No result found for step {name} or return object is missing in the step {name}",
                )

    async def step_parallel(
        self, steps: Sequence[StepDefinition | tuple[str, PipelineAction]]
    ) -> tuple[Any, ...]:
        """Run steps concurrently; results come back in declaration order.

        Each entry is a ``StepDefinition`` or a ``(name, action)`` pair. The
        first failure propagates immediately. Steps still in flight keep
        running and their results are discarded.
        """
        definitions = _as_definitions(steps)

        self.logger.info(f"[Pipeline Parallel:START] Running {len(definitions)} steps")
        try:
            results = await asyncio.gather(
                *(self.step(definition.name, definition.action) for definition in definitions)
            )
        except PipelineWorkflowException as error:
            self.logger.error(
                f"[Pipeline Parallel:ERROR] step name: {error.step_name} || "
                f"error message: {error.message}"
            )
            raise

        self.logger.info("[Pipeline Parallel:COMPLETE]")
        return tuple(results)

    async def if_else_step(
        self,
        name: str,
        predicate: Callable[[Mapping[str, Any]], bool],
        if_action: PipelineAction,
        else_action: PipelineAction,
    ) -> Any:
        """Run exactly one branch, stored as ``<name>_IF`` or ``<name>_ELSE``."""
        try:
            take_if = bool(predicate(self.context))
        except Exception as ex:
            self.logger.error(
                f"[Pipeline IfElse Step:ERROR] step name: {name} || predicate raised: {ex}"
            )
            raise PipelineWorkflowException(
                name, False, HTTPStatus.INTERNAL_SERVER_ERROR, f"Condition of step {name} failed: {ex}"
            ) from ex

        branch = "IF" if take_if else "ELSE"
        self.logger.info(f"[Pipeline IfElse Step:EVALUATE] step name: {name} || branch: {branch}")

        return await self.step(f"{name}_{branch}", if_action if take_if else else_action)

    def has_result(self, name: str) -> bool:
        return name in self._context

    def get_result(self, name: str) -> Any:
        """Return a stored step value.

        Raises:
            PipelineWorkflowException: no successful step stored under ``name``.
        """
        if name not in self._context:
            self.logger.error(f"[Pipeline Step:ERROR] step name: {name} || error message: not found")
            raise PipelineWorkflowException(
                name, False, HTTPStatus.INTERNAL_SERVER_ERROR, f"Step {name} not found"
            )
        return self._context[name]

    def _record(self, name: str, started: float, success: bool) -> None:
        get_metrics_collector().record_step(
            "pipeline", self.name, name, time.perf_counter() - started, success
        )
