"""
Outcome contract shared by every step action.

A step action never signals an expected failure by raising. It returns either
``Ok(value)`` or ``Err(ResultError(...))`` and the engines branch on the two
variants with ``match``:

    >>> match await reserve_inventory(ctx):
    ...     case Ok(value):
    ...         ...
    ...     case Err(error):
    ...         log(error.status_code, error.message)

``VOID_RESULT`` is the value a step returns when it succeeded but has nothing
worth storing; the pipeline workflow returns it to the caller without keeping
it in its context.
"""

import inspect
import traceback
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")


class ResultUnwrapError(Exception):
    """Raised when ``unwrap()`` is called on an ``Err``."""


@dataclass(frozen=True, slots=True)
class ResultError:
    """Failure details carried by ``Err``."""

    status_code: int
    message: str
    stack_trace: str | None = None
    fallback_object: Any | None = None


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome wrapping a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> "Ok[U]":
        return Ok(fn(self.value))


@dataclass(frozen=True, slots=True)
class Err:
    """Failed outcome wrapping a ``ResultError``."""

    error: ResultError

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self):
        raise ResultUnwrapError(f"Called unwrap() on Err: {self.error.message}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, fn: Callable[[Any], Any]) -> "Err":
        return self


Result = Union[Ok[T], Err]


class _VoidResult:
    """Type of the ``VOID_RESULT`` singleton."""

    _instance: "_VoidResult | None" = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "VOID_RESULT"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (_VoidResult, ())


VOID_RESULT = _VoidResult()


def is_void_result(value: Any) -> bool:
    """Check whether a step value is the ``VOID_RESULT`` marker."""
    return value is VOID_RESULT


def success(value: T) -> Ok[T]:
    """Build a successful outcome."""
    return Ok(value)


def failure(
    status_code: int,
    message: str,
    *,
    fallback_object: Any | None = None,
    stack_trace: str | None = None,
) -> Err:
    """Build a failed outcome."""
    return Err(ResultError(int(status_code), message, stack_trace, fallback_object))


def failure_from_exception(
    exc: BaseException,
    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
    message: str | None = None,
) -> Err:
    """Convert a raised exception into a failed outcome, keeping its traceback."""
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return failure(status_code, message if message is not None else str(exc), stack_trace=stack)


async def try_catch_result(on_try: Callable[[], Awaitable[Result[T]]] | None) -> Result[T]:
    """Await a Result-returning action, turning raised exceptions into ``Err``."""
    if on_try is None:
        return failure(HTTPStatus.BAD_REQUEST, "Action is required")
    try:
        return await on_try()
    except Exception as ex:
        return failure_from_exception(ex)


async def try_catch_saga_result(
    on_try: Callable[[], Awaitable[Result[T]]] | None,
    on_fallback: Callable[[ResultError], Awaitable[Result[T]]] | None = None,
    on_finally: Callable[[], Any] | None = None,
) -> Result[T]:
    """Like ``try_catch_result`` with a fallback for failures and a finaliser.

    ``on_fallback`` receives the ``ResultError`` of a returned ``Err`` or of a
    converted exception, and its outcome replaces the original one.
    ``on_finally`` always runs and may be sync or async.
    """
    if on_try is None:
        return failure(HTTPStatus.BAD_REQUEST, "Action is required")
    try:
        try:
            outcome = await on_try()
        except Exception as ex:
            outcome = failure_from_exception(ex)

        if isinstance(outcome, Err) and on_fallback is not None:
            return await on_fallback(outcome.error)
        return outcome
    finally:
        if on_finally is not None:
            pending = on_finally()
            if inspect.isawaitable(pending):
                await pending


class Guard:
    """Fluent validator for required and optional step inputs.

    Example:
        >>> Guard().check(order_id, "order_id").optional(coupon, "coupon").validate()
    """

    def __init__(self):
        self._values: list[tuple[Any, bool, str | None]] = []

    def check(self, value: Any, key_hint: str | None = None) -> "Guard":
        self._values.append((value, True, key_hint))
        return self

    def optional(self, value: Any, key_hint: str | None = None) -> "Guard":
        self._values.append((value, False, key_hint))
        return self

    def validate(self) -> Result[_VoidResult]:
        for value, required, key_hint in self._values:
            is_missing = value is None
            is_invalid = is_missing or value == ""
            label = f" [{key_hint}]" if key_hint else ""

            if required and is_invalid:
                return failure(
                    HTTPStatus.BAD_REQUEST, f"Required value{label} is missing or invalid"
                )

            if not required and not is_missing and value == "":
                return failure(
                    HTTPStatus.BAD_REQUEST, f"Optional value{label} is present but invalid"
                )

        return success(VOID_RESULT)
