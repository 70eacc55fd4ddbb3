"""
Core Type Definitions for the Session Orchestration Layer

Implements Result/Either values for zero-exception control flow at the
orchestrator boundary, plus the identity types used to correlate
backend completions with the requests that caused them.

Design Principles:
- Never raise across the public orchestrator boundary (use Result)
- Request tokens are unique per orchestrator and never reused
- Value objects are frozen; mutation happens only inside the orchestrator
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
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


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result.

    Immutable container for a successful synchronous outcome, e.g. the
    request token of a submitted session operation.
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

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result.

    Carries the error value; the orchestrator puts a MatchMeshError here.
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

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP WITH NANOSECOND PRECISION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    High-precision wall-clock timestamp.

    Stores nanoseconds since Unix epoch. Used to stamp request tokens
    and errors so completions can be correlated in logs.
    """

    nanos: int

    NANOS_PER_SECOND = 1_000_000_000

    @classmethod
    def now(cls) -> Timestamp:
        return cls(nanos=time.time_ns())

    def elapsed_nanos(self) -> int:
        """Nanoseconds elapsed since this timestamp."""
        return time.time_ns() - self.nanos

    def elapsed_seconds(self) -> float:
        return self.elapsed_nanos() / self.NANOS_PER_SECOND

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"


# =============================================================================
# OPERATION KINDS AND REQUEST TOKENS
# =============================================================================
class OperationKind(Enum):
    """
    The session operations the orchestrator drives.

    Each kind owns exactly one pending-request slot: at most one request
    of a given kind is outstanding at any time.
    """

    CREATE = "create"
    FIND = "find"
    JOIN = "join"
    DESTROY = "destroy"
    START = "start"

    @property
    def label(self) -> str:
        """Metric/log label for this kind."""
        return self.value


@dataclass(frozen=True, slots=True)
class RequestToken:
    """
    Correlation token for one submitted session request.

    Issued when a request is registered, carried by the completion
    callback handed to the backend, and validated before any completion
    event is emitted. Serials are monotonic within one orchestrator.
    """

    kind: OperationKind
    serial: int
    issued_at: Timestamp = field(default_factory=Timestamp.now, compare=False)

    def __str__(self) -> str:
        return f"{self.kind.value}#{self.serial}"
