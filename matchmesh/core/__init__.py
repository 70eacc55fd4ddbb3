"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for session orchestration:
- Result values for zero-exception control flow
- Request tokens for completion correlation
- Error hierarchy with stable codes
- Configuration management with validation
"""

from matchmesh.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    OperationKind,
    RequestToken,
)
from matchmesh.core.errors import (
    ErrorCode,
    MatchMeshError,
    RequestError,
    BackendError,
    SearchError,
)
from matchmesh.core.config import (
    MatchMeshConfig,
    OrchestratorConfig,
    LobbyConfig,
    BackendConfig,
    LanConfig,
    RedisBackendConfig,
    ObservabilityConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "OperationKind",
    "RequestToken",
    "ErrorCode",
    "MatchMeshError",
    "RequestError",
    "BackendError",
    "SearchError",
    "MatchMeshConfig",
    "OrchestratorConfig",
    "LobbyConfig",
    "BackendConfig",
    "LanConfig",
    "RedisBackendConfig",
    "ObservabilityConfig",
]
