"""
worldstore/result.py -- Ok/Fail result type for the storage core.

Every storage operation returns a ``Result`` instead of raising for an
expected condition (validation failure, missing row, I/O or constraint
error).  A ``Result`` is either ``Ok(value)`` or ``Fail(error)``; both are
frozen dataclasses, so callers can branch with ``isinstance``, the
``is_ok``/``is_fail`` helpers, or structural pattern matching.

Usage::

    from worldstore.result import Ok, Fail

    result = store.get("grimnak-1a2b3c4d")
    match result:
        case Ok(None):
            print("no such entity")
        case Ok(entity):
            print(entity.name)
        case Fail(error):
            print(error.code, error)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E")
F = TypeVar("F")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying ``value``."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_fail(self) -> bool:
        return False

    @property
    def error(self):
        raise AttributeError(
            "Cannot access the error of a successful Result. "
            "Check is_fail() before accessing error."
        )

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def unwrap_or_else(self, factory: Callable[[Any], T]) -> T:
        return self.value

    def expect(self, message: str) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> "Ok[U]":
        return Ok(fn(self.value))

    def map_error(self, fn: Callable[[Any], F]) -> "Ok[T]":
        return self

    def and_then(self, fn: Callable[[T], "Result[U, E]"]) -> "Result[U, E]":
        return fn(self.value)


@dataclass(frozen=True)
class Fail(Generic[E]):
    """Failed outcome carrying ``error``."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_fail(self) -> bool:
        return True

    @property
    def value(self):
        raise AttributeError(
            "Cannot access the value of a failed Result. "
            "Check is_ok() before accessing value."
        )

    def unwrap(self):
        """Raise the carried error (or a ``RuntimeError`` wrapping it)."""
        if isinstance(self.error, BaseException):
            raise self.error
        raise RuntimeError(f"Called unwrap() on a failed Result: {self.error!r}")

    def unwrap_or(self, default: T) -> T:
        return default

    def unwrap_or_else(self, factory: Callable[[E], T]) -> T:
        return factory(self.error)

    def expect(self, message: str):
        raise RuntimeError(f"{message}: {self.error}")

    def map(self, fn: Callable[[Any], U]) -> "Fail[E]":
        return self

    def map_error(self, fn: Callable[[E], F]) -> "Fail[F]":
        return Fail(fn(self.error))

    def and_then(self, fn: Callable[[Any], "Result[U, E]"]) -> "Fail[E]":
        return self


Result = Union[Ok[T], Fail[E]]


def combine(results: Iterable[Result[T, E]]) -> Result[list[T], E]:
    """Collect the values of *results*, stopping at the first failure."""
    values: list[T] = []
    for result in results:
        if isinstance(result, Fail):
            return result
        values.append(result.value)
    return Ok(values)


def combine_all(results: Iterable[Result[T, E]]) -> Result[list[T], list[E]]:
    """Collect every value, or every error if at least one result failed."""
    values: list[T] = []
    errors: list[E] = []
    for result in results:
        if isinstance(result, Fail):
            errors.append(result.error)
        else:
            values.append(result.value)
    if errors:
        return Fail(errors)
    return Ok(values)
