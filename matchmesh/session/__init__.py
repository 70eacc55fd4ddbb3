"""
Session Module: Request Orchestration Against a Session Backend

Provides:
- SessionOrchestrator: Create/Find/Join/Destroy/Start with completion events
- SessionBackend: Protocol implemented by concrete backends
- PendingRequestTable: One-slot-per-kind request correlation
- SessionEvents: The five completion delegates
- SessionLobby: Host/join affordances driven by completion events

Architecture:
- Submission: synchronous, returns Result[RequestToken, error]
- Completion: backend callback -> token check -> ordered event delivery
- Chaining: create over an existing session destroys it first
"""

from matchmesh.session.settings import (
    JoinResult,
    SessionConfig,
    SearchQuery,
    SearchResult,
)
from matchmesh.session.backend import (
    SessionBackend,
    NamedSession,
    NamedSessionState,
)
from matchmesh.session.pending import (
    PendingRequest,
    PendingRequestTable,
    SlotState,
)
from matchmesh.session.events import (
    CompletionEvent,
    MulticastDelegate,
    SessionEvents,
)
from matchmesh.session.orchestrator import (
    DeferredCreate,
    SessionOrchestrator,
)
from matchmesh.session.lobby import (
    LoggingTravelHandler,
    SessionLobby,
    TravelHandler,
)

__all__ = [
    # Settings
    "JoinResult",
    "SessionConfig",
    "SearchQuery",
    "SearchResult",
    # Backend
    "SessionBackend",
    "NamedSession",
    "NamedSessionState",
    # Correlation
    "PendingRequest",
    "PendingRequestTable",
    "SlotState",
    # Events
    "CompletionEvent",
    "MulticastDelegate",
    "SessionEvents",
    # Orchestration
    "DeferredCreate",
    "SessionOrchestrator",
    # Lobby
    "LoggingTravelHandler",
    "SessionLobby",
    "TravelHandler",
]
