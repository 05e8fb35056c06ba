"""Terminal exceptions raised by the saga orchestrator and the pipeline workflow."""

from http import HTTPStatus
from typing import Any


class WorkflowError(Exception):
    """Base class for terminal workflow failures.

    Always carries the name of the step that ended the run.
    """

    def __init__(
        self,
        step_name: str,
        status_code: int,
        message: str,
        stack_trace: str | None = None,
    ):
        super().__init__(message)
        self.step_name = step_name
        self.status_code = int(status_code)
        self.message = message
        self.stack_trace = stack_trace

    @property
    def status_phrase(self) -> str:
        try:
            return HTTPStatus(self.status_code).phrase
        except ValueError:
            return "Unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "status_code": self.status_code,
            "message": self.message,
        }

    def __str__(self) -> str:
        return self.message


class SagaExecutionException(WorkflowError):
    """A saga run failed; ``is_compensated`` tells whether the rollback was complete."""

    def __init__(
        self,
        step_name: str,
        status_code: int,
        message: str,
        is_compensated: bool,
        stack_trace: str | None = None,
        failed_compensations: tuple[str, ...] = (),
    ):
        super().__init__(step_name, status_code, message, stack_trace)
        self.is_compensated = is_compensated
        self.failed_compensations = tuple(failed_compensations)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["is_compensated"] = self.is_compensated
        data["failed_compensations"] = list(self.failed_compensations)
        return data

    def __repr__(self) -> str:
        return (
            f"SagaExecutionException(step_name={self.step_name!r}, "
            f"status_code={self.status_code}, is_compensated={self.is_compensated})"
        )


class PipelineWorkflowException(WorkflowError):
    """A pipeline step failed or a missing step result was requested."""

    def __init__(
        self,
        step_name: str,
        success: bool,
        status_code: int,
        message: str,
        stack_trace: str | None = None,
    ):
        super().__init__(step_name, status_code, message, stack_trace)
        self.success = success

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["success"] = self.success
        return data

    def __repr__(self) -> str:
        return (
            f"PipelineWorkflowException(step_name={self.step_name!r}, "
            f"status_code={self.status_code})"
        )
