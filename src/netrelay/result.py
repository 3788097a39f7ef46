"""
Result type for explicit error handling across the upload pipeline.

Every network-facing capability (storage reads, relay submissions, receipt
polling, funding) reports failures as values rather than exceptions, so the
orchestrator can classify each one as retryable or fatal with a ``match``.

Usage:
    >>> def parse_chain_id(raw: str) -> Result[int, str]:
    ...     if not raw.isdigit():
    ...         return Failure(f"not a chain id: {raw!r}")
    ...     return Success(int(raw))
    ...
    >>> match parse_chain_id("8453"):
    ...     case Success(chain_id):
    ...         print(f"chain {chain_id}")
    ...     case Failure(error):
    ...         print(error)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, NoReturn, TypeVar


T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")
F = TypeVar("F")


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful outcome carrying a value of type T."""

    value: T

    def is_success(self) -> bool:
        return True

    def is_failure(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the carried value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U, E]:
        """Transform the carried value."""
        return Success(f(self.value))

    def map_error(self, f: Callable[[E], F]) -> Result[T, F]:
        """No-op on Success."""
        result: Result[T, F] = Success(self.value)
        return result

    def flat_map(self, f: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain another Result-returning step."""
        return f(self.value)


@dataclass(frozen=True)
class Failure(Generic[E]):
    """Failed outcome carrying an error of type E."""

    error: E

    def is_success(self) -> bool:
        return False

    def is_failure(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        """
        Unwrap the success value.

        Raises:
            RuntimeError: Always, since Failure has no value.
        """
        raise RuntimeError(f"Called unwrap() on Failure: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U, E]:
        """No-op on Failure."""
        result: Result[U, E] = Failure(self.error)
        return result

    def map_error(self, f: Callable[[E], F]) -> Result[T, F]:
        """Transform the carried error, e.g. to wrap it in a campaign-level ADT."""
        return Failure(f(self.error))

    def flat_map(self, f: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """No-op on Failure."""
        result: Result[U, E] = Failure(self.error)
        return result


Result = Success[T] | Failure[E]


def partition_results(
    results: list[Result[T, E]],
) -> tuple[list[T], list[E]]:
    """
    Split a list of Results into success values and errors, keeping order.

    Args:
        results: Results to split

    Returns:
        Tuple of (values, errors)
    """
    values: list[T] = [result.value for result in results if isinstance(result, Success)]
    errors: list[E] = [result.error for result in results if isinstance(result, Failure)]
    return (values, errors)


def first_failure(results: list[Result[T, E]]) -> Failure[E] | None:
    """Return the first Failure in ``results``, or None when all succeeded."""
    return next((result for result in results if isinstance(result, Failure)), None)
