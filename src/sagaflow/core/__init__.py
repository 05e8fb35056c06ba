"""
Workflow execution engines.

- ``SagaOrchestrator``: ordered steps with per-step retry and reverse-order
  compensation of everything that already succeeded
- ``PipelineWorkflow``: sequential, parallel and conditional named steps over a
  shared result context
"""

from .exceptions import PipelineWorkflowException, SagaExecutionException, WorkflowError
from .pipeline import PipelineWorkflow, StepDefinition, define_parallel_step, define_parallel_steps
from .result import (
    VOID_RESULT,
    Err,
    Guard,
    Ok,
    Result,
    ResultError,
    ResultUnwrapError,
    failure,
    failure_from_exception,
    is_void_result,
    success,
    try_catch_result,
    try_catch_saga_result,
)
from .runtime_patterns import remaining_budget, retry_result, with_deadline_result, with_timeout
from .saga import SagaContext, SagaOrchestrator, SagaStep

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
    "ResultUnwrapError",
    "VOID_RESULT",
    "is_void_result",
    "success",
    "failure",
    "failure_from_exception",
    "try_catch_result",
    "try_catch_saga_result",
    "Guard",
    "retry_result",
    "remaining_budget",
    "with_timeout",
    "with_deadline_result",
]
