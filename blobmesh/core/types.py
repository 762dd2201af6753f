"""
Core Type Definitions for blobmesh

Implements the Result/Either monad used by every storage operation, so that
backend failures travel as values instead of exceptions.

Design Principles:
- Operational failures are values (Err), configuration failures are raised
- `is_ok()` is the primary success signal at call sites
- Immutable, slotted containers

Complexity: O(1) for all type operations
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    TypeVar,
    Union,
)

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for a successful operation result
    (bytes read, bytes written, a size, a content type...).
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries the error value (a StorageError for adapter operations)
    with its error kind and cause.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        """Propagate error through monadic chain."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    Nanosecond timestamp used to stamp errors for log correlation.
    """

    nanos: int

    @classmethod
    def now(cls) -> Timestamp:
        return cls(nanos=time.time_ns())

    @property
    def seconds(self) -> float:
        """Convert to floating-point seconds."""
        return self.nanos / 1_000_000_000

    def elapsed_millis(self) -> float:
        """Milliseconds elapsed since this timestamp."""
        return (time.time_ns() - self.nanos) / 1_000_000

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"
