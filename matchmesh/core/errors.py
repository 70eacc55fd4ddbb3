"""
Error Hierarchy for Session Orchestration

Design Principles:
- Errors are returned inside Err, never raised across the orchestrator boundary
- Every failure path still terminates in exactly one completion event
- Carry full error context for debugging and log correlation

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause for root cause analysis
- Timestamp for correlation with request tokens

Usage:
    result = orchestrator.create_session(4, "Ranked")
    match result:
        case Ok(token):
            track(token)
        case Err(error) if error.code is ErrorCode.REQUEST_OUTSTANDING:
            wait_for_previous_request()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from matchmesh.core.types import OperationKind, Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Request (caller precondition) errors
    - 2xxx: Backend capability errors
    - 3xxx: Search errors
    - 9xxx: Internal/unknown errors
    """

    # Request errors (1xxx)
    REQUEST_OUTSTANDING = 1001
    REQUEST_INVALID_ARGUMENT = 1002
    REQUEST_TIMEOUT = 1003

    # Backend errors (2xxx)
    BACKEND_UNAVAILABLE = 2001
    BACKEND_SUBMISSION_REJECTED = 2002
    BACKEND_ADDRESS_UNRESOLVED = 2003
    BACKEND_CONNECTION_FAILED = 2004
    BACKEND_OPERATION_FAILED = 2005

    # Search errors (3xxx)
    SEARCH_EMPTY_RESULT_SET = 3001

    # Internal errors (9xxx)
    INTERNAL_ERROR = 9001
    INTERNAL_CONFIGURATION_ERROR = 9002


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class MatchMeshError(Exception):
    """
    Base class for all session orchestration errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Timestamp for ordering against request tokens
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[Exception] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def with_context(self, **kwargs: Any) -> MatchMeshError:
        """Add context to error (returns new instance of the same class)."""
        return type(self)(
            code=self.code,
            message=self.message,
            error_id=self.error_id,
            timestamp=self.timestamp,
            cause=self.cause,
            context={**self.context, **kwargs},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for structured logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# REQUEST ERRORS (CALLER PRECONDITIONS)
# =============================================================================
@dataclass
class RequestError(MatchMeshError):
    """
    Caller-side precondition violations and request lifetime errors.

    Precondition violations are reported synchronously and produce no
    completion event: the request never entered the state machine.
    """

    @classmethod
    def outstanding(cls, kind: OperationKind, pending: str) -> RequestError:
        """A request of the same kind is already in flight."""
        return cls(
            code=ErrorCode.REQUEST_OUTSTANDING,
            message=f"A {kind.value} request is already outstanding ({pending})",
            context={"operation": kind.value, "pending": pending},
        )

    @classmethod
    def invalid_argument(cls, name: str, value: Any, reason: str) -> RequestError:
        return cls(
            code=ErrorCode.REQUEST_INVALID_ARGUMENT,
            message=f"Invalid argument '{name}': {reason}",
            context={"argument": name, "value": str(value)[:100], "reason": reason},
        )

    @classmethod
    def timeout(cls, kind: OperationKind, timeout_ms: int) -> RequestError:
        """No backend completion arrived within the bounded wait."""
        return cls(
            code=ErrorCode.REQUEST_TIMEOUT,
            message=f"{kind.value} request timed out after {timeout_ms}ms",
            context={"operation": kind.value, "timeout_ms": timeout_ms},
        )


# =============================================================================
# BACKEND ERRORS
# =============================================================================
@dataclass
class BackendError(MatchMeshError):
    """
    Errors originating from the session backend capability.

    Covers a missing capability, synchronous submission rejection,
    address resolution and transport failures of concrete backends.
    """

    @classmethod
    def unavailable(cls, operation: str) -> BackendError:
        return cls(
            code=ErrorCode.BACKEND_UNAVAILABLE,
            message=f"Session backend unavailable for '{operation}'",
            context={"operation": operation},
        )

    @classmethod
    def submission_rejected(cls, operation: str, session_name: str) -> BackendError:
        """Backend refused the request synchronously."""
        return cls(
            code=ErrorCode.BACKEND_SUBMISSION_REJECTED,
            message=f"Backend rejected '{operation}' for session '{session_name}'",
            context={"operation": operation, "session_name": session_name},
        )

    @classmethod
    def address_unresolved(cls, session_name: str) -> BackendError:
        return cls(
            code=ErrorCode.BACKEND_ADDRESS_UNRESOLVED,
            message=f"No connect address for session '{session_name}'",
            context={"session_name": session_name},
        )

    @classmethod
    def connection_failed(
        cls,
        target: str,
        cause: Optional[Exception] = None,
    ) -> BackendError:
        return cls(
            code=ErrorCode.BACKEND_CONNECTION_FAILED,
            message=f"Failed to connect to session backend at {target}",
            cause=cause,
            context={"target": target},
        )

    @classmethod
    def operation_failed(
        cls,
        operation: str,
        cause: Optional[Exception] = None,
    ) -> BackendError:
        return cls(
            code=ErrorCode.BACKEND_OPERATION_FAILED,
            message=f"Backend operation '{operation}' failed: {cause}",
            cause=cause,
            context={"operation": operation},
        )


# =============================================================================
# SEARCH ERRORS
# =============================================================================
@dataclass
class SearchError(MatchMeshError):
    """Errors from session discovery."""

    @classmethod
    def empty_result_set(cls, max_results: int) -> SearchError:
        """Search finished without candidates; reported as a failed find."""
        return cls(
            code=ErrorCode.SEARCH_EMPTY_RESULT_SET,
            message="Session search returned no results",
            context={"max_results": max_results},
        )
