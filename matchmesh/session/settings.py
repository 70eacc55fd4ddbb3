"""
Session Value Objects: Settings, Search Queries and Results

All types here are immutable. A SessionConfig is built fresh for each
create request, a SearchQuery for each find request; SearchResults are
produced by the backend and only read by the orchestrator and its caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from matchmesh.core import constants as C


# =============================================================================
# JOIN RESULT CODES
# =============================================================================
class JoinResult(Enum):
    """Outcome of a join request, surfaced verbatim to the caller."""

    SUCCESS = "success"
    SESSION_IS_FULL = "session_is_full"
    SESSION_DOES_NOT_EXIST = "session_does_not_exist"
    COULD_NOT_RETRIEVE_ADDRESS = "could_not_retrieve_address"
    ALREADY_IN_SESSION = "already_in_session"
    UNKNOWN_ERROR = "unknown_error"

    @property
    def is_success(self) -> bool:
        return self is JoinResult.SUCCESS


# =============================================================================
# SESSION CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class SessionConfig:
    """
    Settings a hosted session is created with.

    Invariants:
        num_public_connections >= 1
        match_type is non-empty
    """

    num_public_connections: int
    match_type: str
    is_lan_match: bool
    should_advertise: bool = True
    allow_join_in_progress: bool = True
    allow_join_via_presence: bool = True
    uses_presence: bool = True
    use_lobbies_if_available: bool = True
    build_unique_id: int = C.BUILD_UNIQUE_ID

    def __post_init__(self) -> None:
        if self.num_public_connections < 1:
            raise ValueError(
                f"num_public_connections must be >= 1, got {self.num_public_connections}"
            )
        if not self.match_type:
            raise ValueError("match_type must be non-empty")

    @classmethod
    def for_match(
        cls,
        num_public_connections: int,
        match_type: str,
        lan_mode: bool,
    ) -> SessionConfig:
        """Settings for an advertised, presence-based, join-in-progress match."""
        return cls(
            num_public_connections=num_public_connections,
            match_type=match_type,
            is_lan_match=lan_mode,
        )

    def attributes(self) -> dict[str, Any]:
        """Attribute bag advertised with the session for discovery."""
        return {C.MATCH_TYPE_KEY: self.match_type}


# =============================================================================
# SEARCH QUERY
# =============================================================================
@dataclass(frozen=True, slots=True)
class SearchQuery:
    """Parameters of one session search."""

    max_results: int
    is_lan_query: bool
    presence: bool = True

    def __post_init__(self) -> None:
        if self.max_results < 1:
            raise ValueError(f"max_results must be >= 1, got {self.max_results}")


# =============================================================================
# SEARCH RESULT
# =============================================================================
@dataclass(frozen=True)
class SearchResult:
    """
    One discovered session.

    Opaque to the orchestrator except for its attribute bag, which the
    caller inspects (by key) to pick a session with the wanted match type.
    """

    session_id: str
    owner_id: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    open_public_connections: int = 0
    max_public_connections: int = 0
    ping_ms: int = 0

    def __post_init__(self) -> None:
        # Read-only view; the backend owns the underlying data
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        """Look up an advertised attribute."""
        return self.attributes.get(key, default)

    @property
    def match_type(self) -> Optional[str]:
        return self.get(C.MATCH_TYPE_KEY)

    def __hash__(self) -> int:
        return hash(self.session_id)

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, SearchResult):
            return self.session_id == other.session_id
        return NotImplemented
