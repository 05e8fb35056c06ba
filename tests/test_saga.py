"""
Tests for the saga orchestrator.

Tests cover:
- Ordered execution and result storage
- Bounded retries, retry delay and error hooks
- Reverse-order compensation and the compensation flag
- Resuming from a step label
- Construction-time validation
"""

from http import HTTPStatus
from unittest.mock import AsyncMock, patch

import pytest

from sagaflow.config.settings import SagaConfig, Settings
from sagaflow.core.exceptions import SagaExecutionException, WorkflowError
from sagaflow.core.result import failure, success
from sagaflow.core.saga import SagaContext, SagaOrchestrator, SagaStep
from sagaflow.observability.metrics import get_engine_metrics


def make_step(label, calls, outcomes=None, retry=None, compensate_error=None, on_error=None, delay=None):
    """Build a step whose action replays ``outcomes`` and records every call in ``calls``."""
    queue = list(outcomes) if outcomes is not None else [success(f"{label}-value")]

    async def action(ctx):
        calls.append(("action", label))
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def compensate(ctx):
        calls.append(("compensate", label))
        if compensate_error is not None:
            raise compensate_error

    return SagaStep(
        label=label,
        action=action,
        compensate=compensate,
        on_error=on_error,
        retry=retry,
        delay=delay,
    )


def actions(calls):
    return [label for kind, label in calls if kind == "action"]


def compensations(calls):
    return [label for kind, label in calls if kind == "compensate"]


class TestSagaSuccess:
    """Runs where every step succeeds."""

    @pytest.mark.asyncio
    async def test_all_steps_run_in_order(self, settings):
        calls = []
        saga = SagaOrchestrator("checkout", {"order_id": "A-17"}, settings=settings)
        for label in ("reserve", "charge", "ship"):
            saga.add_step(make_step(label, calls))

        ctx = await saga.run()

        assert actions(calls) == ["reserve", "charge", "ship"]
        assert compensations(calls) == []
        assert ctx.is_success is True
        assert saga.get_context() is ctx
        assert saga.get_step_result("reserve") == "reserve-value"
        assert saga.get_step_result("ship") == "ship-value"
        assert list(ctx.results) == ["reserve", "charge", "ship"]

    @pytest.mark.asyncio
    async def test_steps_see_context_and_previous_results(self, settings):
        seen = {}

        async def reserve(ctx):
            return success({"sku": ctx.context["sku"], "qty": 2})

        async def charge(ctx):
            seen["reservation"] = ctx.results["reserve"]
            ctx.context["charged"] = True
            return success(42.5)

        async def noop(ctx):
            return None

        saga = SagaOrchestrator("checkout", {"sku": "X-1"}, settings=settings)
        saga.add_step(SagaStep("reserve", reserve, noop)).add_step(SagaStep("charge", charge, noop))

        ctx = await saga.run()

        assert seen["reservation"] == {"sku": "X-1", "qty": 2}
        assert ctx.context == {"sku": "X-1", "charged": True}
        assert saga.get_step_result("charge") == 42.5

    def test_add_step_chains(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        returned = saga.add_step(make_step("a", calls)).step(make_step("b", calls))

        assert returned is saga
        assert [s.label for s in saga.steps] == ["a", "b"]

    def test_initial_context_state(self, settings):
        saga = SagaOrchestrator("s", {"k": 1}, settings=settings)
        ctx = saga.get_context()

        assert isinstance(ctx, SagaContext)
        assert ctx.is_success is False
        assert ctx.context == {"k": 1}
        assert ctx.results == {}

    def test_missing_step_result_is_none(self, settings):
        saga = SagaOrchestrator("s", None, settings=settings)
        assert saga.get_step_result("never-ran") is None
        assert saga.get_step_result("never-ran", "fallback") == "fallback"

    @pytest.mark.asyncio
    async def test_empty_saga_succeeds(self, settings):
        saga = SagaOrchestrator("empty", None, settings=settings)
        ctx = await saga.run()
        assert ctx.is_success is True


class TestSagaRetry:
    """Retry budget, delay and error hook behaviour."""

    @pytest.mark.asyncio
    async def test_persistent_failure_uses_whole_budget(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("flaky", calls, [failure(503, "down")], retry=3))

        with pytest.raises(SagaExecutionException):
            await saga.run()

        assert actions(calls) == ["flaky", "flaky", "flaky"]

    @pytest.mark.asyncio
    async def test_success_on_later_attempt_stops_retrying(self, settings):
        calls = []
        outcomes = [failure(503, "down"), success("up"), success("unused")]
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("flaky", calls, outcomes, retry=5))

        ctx = await saga.run()

        assert actions(calls) == ["flaky", "flaky"]
        assert ctx.is_success is True
        assert saga.get_step_result("flaky") == "up"

    @pytest.mark.asyncio
    async def test_default_retry_comes_from_settings(self):
        calls = []
        settings = Settings(saga=SagaConfig(default_retry=2))
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("flaky", calls, [failure(500, "boom")]))

        with pytest.raises(SagaExecutionException):
            await saga.run()

        assert len(actions(calls)) == 2

    @pytest.mark.asyncio
    async def test_error_hook_called_for_each_failure(self, settings):
        calls = []
        on_error = AsyncMock()
        outcomes = [failure(503, "first"), failure(503, "second"), success("ok")]
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("flaky", calls, outcomes, retry=3, on_error=on_error))

        await saga.run()

        assert on_error.await_count == 2
        first_error, first_ctx = on_error.await_args_list[0].args
        assert first_error.message == "first"
        assert first_ctx is saga.get_context()
        assert on_error.await_args_list[1].args[0].message == "second"

    @pytest.mark.asyncio
    async def test_step_delay_between_attempts(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("flaky", calls, [failure(503, "down")], retry=3, delay=0.25))

        with patch("sagaflow.core.saga.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(SagaExecutionException):
                await saga.run()

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.25)

    @pytest.mark.asyncio
    async def test_no_sleep_without_delay(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("flaky", calls, [failure(503, "down")], retry=2))

        with patch("sagaflow.core.saga.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(SagaExecutionException):
                await saga.run()

        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_raised_exception_counts_as_failed_attempt(self, settings):
        attempts = []

        async def explode(ctx):
            attempts.append(1)
            raise ConnectionError("broker unreachable")

        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(SagaStep("publish", explode, AsyncMock(), retry=2))

        with pytest.raises(SagaExecutionException) as exc_info:
            await saga.run()

        assert len(attempts) == 2
        assert exc_info.value.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
        assert exc_info.value.message == "broker unreachable"
        assert "ConnectionError" in exc_info.value.stack_trace

    @pytest.mark.asyncio
    async def test_missing_outcome_is_a_failure(self, settings):
        async def forgot_return(ctx):
            return None

        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(SagaStep("lazy", forgot_return, AsyncMock()))

        with pytest.raises(SagaExecutionException, match="returned no outcome"):
            await saga.run()

    @pytest.mark.asyncio
    async def test_error_hook_failure_aborts_without_compensation(self, settings):
        calls = []
        hook = AsyncMock(side_effect=RuntimeError("hook broke"))
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("first", calls))
        saga.add_step(make_step("second", calls, [failure(500, "boom")], retry=3, on_error=hook))

        with pytest.raises(RuntimeError, match="hook broke"):
            await saga.run()

        assert actions(calls) == ["first", "second"]
        assert compensations(calls) == []
        assert saga.get_context().is_success is False


class TestSagaCompensation:
    """Compensation ordering and the aggregate compensation flag."""

    @pytest.mark.asyncio
    async def test_previous_steps_compensated_in_reverse(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("a", calls))
        saga.add_step(make_step("b", calls))
        saga.add_step(make_step("c", calls))
        saga.add_step(make_step("d", calls, [failure(409, "conflict")], retry=2))
        saga.add_step(make_step("e", calls))

        with pytest.raises(SagaExecutionException) as exc_info:
            await saga.run()

        assert compensations(calls) == ["c", "b", "a"]
        assert "e" not in actions(calls)
        assert calls.index(("compensate", "c")) > calls.index(("action", "d"))

        error = exc_info.value
        assert error.step_name == "d"
        assert error.status_code == 409
        assert error.message == "conflict"
        assert error.is_compensated is True
        assert error.failed_compensations == ()
        assert saga.get_context().is_success is False

    @pytest.mark.asyncio
    async def test_failed_step_itself_is_not_compensated(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("only", calls, [failure(500, "boom")]))

        with pytest.raises(SagaExecutionException) as exc_info:
            await saga.run()

        assert compensations(calls) == []
        assert exc_info.value.is_compensated is True

    @pytest.mark.asyncio
    async def test_compensation_failure_does_not_stop_the_rest(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("a", calls))
        saga.add_step(make_step("b", calls, compensate_error=RuntimeError("undo failed")))
        saga.add_step(make_step("c", calls))
        saga.add_step(make_step("d", calls, [failure(500, "boom")]))

        with pytest.raises(SagaExecutionException) as exc_info:
            await saga.run()

        assert compensations(calls) == ["c", "b", "a"]
        assert exc_info.value.is_compensated is False
        assert exc_info.value.failed_compensations == ("b",)

    @pytest.mark.asyncio
    async def test_checkout_example(self, settings):
        """reserveInventory(retry=2) then chargePayment(retry=1) failing once."""
        calls = []
        saga = SagaOrchestrator("checkout", {"order_id": "A-17"}, settings=settings)
        saga.add_step(make_step("reserveInventory", calls, retry=2))
        saga.add_step(
            make_step(
                "chargePayment",
                calls,
                [failure(HTTPStatus.PAYMENT_REQUIRED, "card declined")],
                retry=1,
            )
        )

        with pytest.raises(SagaExecutionException) as exc_info:
            await saga.run()

        assert actions(calls) == ["reserveInventory", "chargePayment"]
        assert compensations(calls) == ["reserveInventory"]
        assert exc_info.value.step_name == "chargePayment"
        assert exc_info.value.is_compensated is True
        assert exc_info.value.status_code == 402

    @pytest.mark.asyncio
    async def test_exception_is_a_workflow_error(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("a", calls, [failure(500, "boom")]))

        with pytest.raises(WorkflowError) as exc_info:
            await saga.run()

        assert exc_info.value.to_dict() == {
            "step_name": "a",
            "status_code": 500,
            "message": "boom",
            "is_compensated": True,
            "failed_compensations": [],
        }


class TestSagaResume:
    """Resuming a run from a step label."""

    @pytest.mark.asyncio
    async def test_resume_skips_steps_before_label(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        for label in ("a", "b", "c", "d"):
            saga.add_step(make_step(label, calls))

        ctx = await saga.run(resume_from_label="c")

        assert actions(calls) == ["c", "d"]
        assert ctx.is_success is True
        assert saga.get_step_result("a") is None

    @pytest.mark.asyncio
    async def test_resume_compensates_only_steps_of_this_run(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("a", calls))
        saga.add_step(make_step("b", calls))
        saga.add_step(make_step("c", calls, [failure(500, "boom")]))

        with pytest.raises(SagaExecutionException):
            await saga.run(resume_from_label="b")

        assert compensations(calls) == ["b"]

    @pytest.mark.asyncio
    async def test_unknown_label_fails_in_strict_mode(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("a", calls))

        with pytest.raises(SagaExecutionException) as exc_info:
            await saga.run(resume_from_label="typo")

        assert calls == []
        assert exc_info.value.step_name == "typo"
        assert exc_info.value.status_code == HTTPStatus.BAD_REQUEST
        assert exc_info.value.is_compensated is True

    @pytest.mark.asyncio
    async def test_unknown_label_runs_everything_when_lenient(self):
        calls = []
        saga = SagaOrchestrator("s", None, settings=Settings(saga=SagaConfig(strict_resume=False)))
        saga.add_step(make_step("a", calls)).add_step(make_step("b", calls))

        ctx = await saga.run(resume_from_label="typo")

        assert actions(calls) == ["a", "b"]
        assert ctx.is_success is True

    @pytest.mark.asyncio
    async def test_rerun_after_remediation(self, settings):
        calls = []
        outcomes = [failure(503, "down"), success("paid")]
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("reserve", calls))
        saga.add_step(make_step("charge", calls, outcomes))

        with pytest.raises(SagaExecutionException):
            await saga.run()
        assert saga.get_context().is_success is False

        ctx = await saga.run(resume_from_label="charge")

        assert ctx.is_success is True
        assert saga.get_step_result("charge") == "paid"


class TestSagaValidation:
    """Construction-time checks."""

    def test_duplicate_label_rejected(self, settings):
        calls = []
        saga = SagaOrchestrator("s", None, settings=settings)
        saga.add_step(make_step("a", calls))

        with pytest.raises(ValueError, match="Duplicate step label 'a'"):
            saga.add_step(make_step("a", calls))

    @pytest.mark.parametrize("retry", [0, -1])
    def test_retry_must_be_positive(self, retry):
        with pytest.raises(ValueError, match="retry must be >= 1"):
            SagaStep("a", AsyncMock(), AsyncMock(), retry=retry)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError, match="delay must be >= 0"):
            SagaStep("a", AsyncMock(), AsyncMock(), delay=-0.1)

    def test_empty_label_rejected(self):
        with pytest.raises(ValueError, match="non-empty"):
            SagaStep("", AsyncMock(), AsyncMock())


class TestSagaObservability:
    """Logging and metrics emitted by a run."""

    @pytest.mark.asyncio
    async def test_transitions_logged_to_supplied_sink(self, settings, mock_logger):
        calls = []
        saga = SagaOrchestrator("orders", None, mock_logger, settings=settings)
        saga.add_step(make_step("a", calls))
        saga.add_step(make_step("b", calls, [failure(500, "boom")], retry=2))

        with pytest.raises(SagaExecutionException):
            await saga.run()

        info = " ".join(str(c.args[0]) for c in mock_logger.info.call_args_list)
        warnings = " ".join(str(c.args[0]) for c in mock_logger.warning.call_args_list)
        errors = " ".join(str(c.args[0]) for c in mock_logger.error.call_args_list)

        assert "[orders] Starting saga run" in info
        assert 'Retrying "b" (1/2)' in info
        assert 'Compensated "a"' in info
        assert 'Step "b" failed: boom' in warnings
        assert "failed after 2 attempts" in errors

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, settings):
        calls = []
        saga = SagaOrchestrator("orders", None, settings=settings)
        saga.add_step(make_step("a", calls))
        saga.add_step(make_step("b", calls, compensate_error=RuntimeError("x")))
        saga.add_step(make_step("c", calls, [failure(500, "boom")], retry=2))

        with pytest.raises(SagaExecutionException):
            await saga.run()

        metrics = get_engine_metrics()["saga_orders"]
        assert metrics["step_calls"] == 4
        assert metrics["step_failures"] == 2
        assert metrics["retries"] == 1
        assert metrics["compensations"] == 2
        assert metrics["compensation_failures"] == 1
        assert metrics["runs"] == 1
        assert metrics["run_success_rate"] == 0
