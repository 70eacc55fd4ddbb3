"""
Multiplayer Session Orchestration

Drives the lifecycle of a game session against a pluggable backend:
- Create: host a session (destroying a stale one first)
- Find: discover advertised sessions
- Join: join a discovered session and resolve the host address
- Destroy / Start: tear down or start the hosted session

Every request returns a token synchronously and ends in exactly one
completion event, delivered in order to bound listeners.

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from matchmesh.core.types import (
    Result,
    Ok,
    Err,
    OperationKind,
    RequestToken,
)
from matchmesh.core.errors import (
    MatchMeshError,
    RequestError,
    BackendError,
    SearchError,
)
from matchmesh.core.config import MatchMeshConfig, OrchestratorConfig, LobbyConfig

from matchmesh.session import (
    JoinResult,
    SessionConfig,
    SearchQuery,
    SearchResult,
    SessionBackend,
    SessionEvents,
    SessionOrchestrator,
    SessionLobby,
)

from matchmesh.backends import (
    LanNetwork,
    LanSessionBackend,
    RedisSessionBackend,
    build_backend,
)

__all__ = [
    "__version__",
    # Core
    "Result",
    "Ok",
    "Err",
    "OperationKind",
    "RequestToken",
    "MatchMeshError",
    "RequestError",
    "BackendError",
    "SearchError",
    "MatchMeshConfig",
    "OrchestratorConfig",
    "LobbyConfig",
    # Session
    "JoinResult",
    "SessionConfig",
    "SearchQuery",
    "SearchResult",
    "SessionBackend",
    "SessionEvents",
    "SessionOrchestrator",
    "SessionLobby",
    # Backends
    "LanNetwork",
    "LanSessionBackend",
    "RedisSessionBackend",
    "build_backend",
]
