"""
sagaflow - in-process workflow execution engines for asyncio code.

Two runners sequence fallible async steps that return ``Ok``/``Err`` outcomes:

- Saga orchestrator: ordered steps, bounded per-step retries, reverse-order
  compensation of completed steps and resumption from a step label
- Pipeline workflow: sequential, parallel and if/else steps whose results are
  kept in a shared context for later steps

Quick Start:
    >>> from sagaflow import SagaOrchestrator, SagaStep, success
    >>>
    >>> async def reserve(ctx):
    ...     return success(await inventory.reserve(ctx.context["sku"]))
    >>>
    >>> async def release(ctx):
    ...     await inventory.release(ctx.results["reserve_inventory"])
    >>>
    >>> saga = SagaOrchestrator("checkout", {"sku": "X-1"})
    >>> saga.add_step(SagaStep("reserve_inventory", reserve, release, retry=2))
    >>> await saga.run()

Failures end a run with exactly one exception: ``SagaExecutionException``
(with ``is_compensated``) or ``PipelineWorkflowException``. Both carry the
failing step's name and an HTTP-style status code.
"""

__version__ = "1.0.0"

from .config.settings import Settings, get_settings
from .core.exceptions import PipelineWorkflowException, SagaExecutionException, WorkflowError
from .core.pipeline import (
    PipelineWorkflow,
    StepDefinition,
    define_parallel_step,
    define_parallel_steps,
)
from .core.result import (
    VOID_RESULT,
    Err,
    Guard,
    Ok,
    Result,
    ResultError,
    failure,
    is_void_result,
    success,
)
from .core.saga import SagaContext, SagaOrchestrator, SagaStep

__all__ = [
    "SagaOrchestrator",
    "SagaStep",
    "SagaContext",
    "PipelineWorkflow",
    "StepDefinition",
    "define_parallel_step",
    "define_parallel_steps",
    "WorkflowError",
    "SagaExecutionException",
    "PipelineWorkflowException",
    "Ok",
    "Err",
    "Result",
    "ResultError",
    "VOID_RESULT",
    "is_void_result",
    "success",
    "failure",
    "Guard",
    "Settings",
    "get_settings",
]
