"""
Session Backend Protocol: The Remote Session Capability

Structural protocol (PEP 544) that concrete backends implement. The
orchestrator never talks to a network directly; it submits requests
through this protocol and reacts to the completion callbacks.

Contract:
    - submit_* returns True when the request was accepted. An accepted
      request invokes its completion callback exactly once, later, on
      the backend's delivery context (never from inside submit_*).
    - submit_* returns False when the request was rejected synchronously;
      the callback is then never invoked.
    - Completion callbacks are delivered one at a time.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Optional, Protocol, Sequence, runtime_checkable

from matchmesh.session.settings import (
    JoinResult,
    SearchQuery,
    SearchResult,
    SessionConfig,
)


# =============================================================================
# COMPLETION CALLBACK SIGNATURES
# =============================================================================
# (session_name, was_successful)
CreateCompleteCallback = Callable[[str, bool], None]
# (was_successful, results)
FindCompleteCallback = Callable[[bool, Sequence[SearchResult]], None]
# (session_name, result)
JoinCompleteCallback = Callable[[str, JoinResult], None]
# (session_name, was_successful)
DestroyCompleteCallback = Callable[[str, bool], None]
StartCompleteCallback = Callable[[str, bool], None]


# =============================================================================
# NAMED SESSION RECORD
# =============================================================================
class NamedSessionState(Enum):
    """Local lifecycle of a session this client hosts or joined."""
    PENDING = auto()       # Created/joined, match not started
    IN_PROGRESS = auto()   # Match started


@dataclass
class NamedSession:
    """A session known to the local client under a well-known name."""
    session_name: str
    session_id: str
    is_host: bool
    settings: Optional[SessionConfig] = None
    state: NamedSessionState = NamedSessionState.PENDING
    connect_address: Optional[str] = None
    registered_players: list[str] = field(default_factory=list)


# =============================================================================
# BACKEND PROTOCOL
# =============================================================================
@runtime_checkable
class SessionBackend(Protocol):
    """
    Abstract session capability.

    Implementations:
        LanSessionBackend   - in-process LAN registry (identity "NULL")
        RedisSessionBackend - Redis advertisement registry (identity "REDIS")
    """

    @property
    @abstractmethod
    def subsystem_name(self) -> str:
        """Backend identity; "NULL" marks the offline/LAN-only backend."""
        ...

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether the capability can accept requests at all."""
        ...

    @abstractmethod
    def get_named_session(self, session_name: str) -> Optional[NamedSession]:
        """The local session registered under this name, if any."""
        ...

    @abstractmethod
    def submit_create(
        self,
        local_player_id: str,
        session_name: str,
        config: SessionConfig,
        on_complete: CreateCompleteCallback,
    ) -> bool:
        ...

    @abstractmethod
    def submit_find(
        self,
        local_player_id: str,
        query: SearchQuery,
        on_complete: FindCompleteCallback,
    ) -> bool:
        ...

    @abstractmethod
    def submit_join(
        self,
        local_player_id: str,
        session_name: str,
        result: SearchResult,
        on_complete: JoinCompleteCallback,
    ) -> bool:
        ...

    @abstractmethod
    def submit_destroy(
        self,
        session_name: str,
        on_complete: DestroyCompleteCallback,
    ) -> bool:
        ...

    @abstractmethod
    def submit_start(
        self,
        session_name: str,
        on_complete: StartCompleteCallback,
    ) -> bool:
        ...

    @abstractmethod
    def get_resolved_connect_string(self, session_name: str) -> Optional[str]:
        """Connect address for a joined session, None when unresolvable."""
        ...
