"""
Runtime helpers for step actions.

The engines never cancel or time out a step themselves. Step actions that need
a deadline or their own retry loop use these helpers, which speak the same
``Result`` contract as the engines:

- Bounded retries with a fixed delay (``retry_result``)
- Deadline propagation (``remaining_budget``, ``with_timeout``)
- Racing an action against a timer (``with_deadline_result``)
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from http import HTTPStatus
from typing import Any, TypeVar

from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from .result import Ok, Result, failure, failure_from_exception

logger = get_logger(__name__)

T = TypeVar("T")


def remaining_budget(deadline: float) -> float:
    """Calculate remaining time budget from absolute deadline."""
    return max(0.0, deadline - time.time())


async def with_timeout(coro: Awaitable[T], deadline: float) -> T:
    """Execute coroutine with deadline-based timeout."""
    budget = remaining_budget(deadline)
    if budget <= 0:
        if asyncio.iscoroutine(coro):
            coro.close()
        raise TimeoutError("Deadline exceeded before execution")

    return await asyncio.wait_for(coro, timeout=budget)


async def with_deadline_result(op: Callable[[], Awaitable[Result[T]]], timeout: float) -> Result[T]:
    """Race a Result-returning action against ``timeout`` seconds."""
    try:
        return await with_timeout(op(), time.time() + timeout)
    except TimeoutError:
        logger.warning(f"Operation timed out after {timeout}s")
        return failure(HTTPStatus.REQUEST_TIMEOUT, f"Operation timed out after {timeout}s")


async def retry_result(
    fn: Callable[..., Awaitable[Result[T]]],
    *args: Any,
    max_retry: int,
    delay: float = 0.0,
    **kwargs: Any,
) -> Result[T]:
    """Call ``fn`` until it returns ``Ok`` or ``max_retry`` attempts are used.

    A raised exception stops the loop and is returned as a 500 ``Err``;
    exhausting the attempts returns a 408 ``Err``.
    """
    if max_retry < 1:
        raise ValueError(f"max_retry must be >= 1, got {max_retry}")

    retries = get_metrics_collector().counter("helper_retry_attempts_total", "Retry helper attempts")

    for attempt in range(1, max_retry + 1):
        retries.add(1, {"function": getattr(fn, "__name__", "anonymous")})
        try:
            result = await fn(*args, **kwargs)
        except Exception as ex:
            logger.error(f"Unexpected error during retry operation (attempt {attempt}): {ex}")
            return failure_from_exception(
                ex, message=f"Unexpected error during retry operation: {ex}"
            )

        if isinstance(result, Ok):
            return result

        if attempt < max_retry:
            logger.debug(f"Retrying after {delay:.2f}s (attempt {attempt}/{max_retry})")
            if delay > 0:
                await asyncio.sleep(delay)

    return failure(HTTPStatus.REQUEST_TIMEOUT, f"Operation failed after {max_retry} retries")
