"""
LAN Session Backend: In-Process Advertisement Registry

The offline backend (identity "NULL"). Every LanSessionBackend sharing a
LanNetwork sees the sessions the others advertise, which is enough to
run host and client orchestrators side by side in one process.

Delivery:
    Completions are scheduled on the running asyncio loop with
    call_later(simulated latency), so they always arrive after submit_*
    has returned. Without a running loop every submission is rejected.

Memory Layout:
    LanNetwork._sessions: session_id -> _Advertisement
    LanSessionBackend._named: session_name -> NamedSession (local view)
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from uuid import uuid4

from matchmesh.core import constants as C
from matchmesh.core.config import LanConfig
from matchmesh.observability.logging import StructuredLogger
from matchmesh.session.backend import (
    CreateCompleteCallback,
    DestroyCompleteCallback,
    FindCompleteCallback,
    JoinCompleteCallback,
    NamedSession,
    NamedSessionState,
    StartCompleteCallback,
)
from matchmesh.session.settings import (
    JoinResult,
    SearchQuery,
    SearchResult,
    SessionConfig,
)

logger = StructuredLogger("matchmesh.backends.lan")


# =============================================================================
# SHARED NETWORK
# =============================================================================

@dataclass(slots=True)
class _Advertisement:
    session_id: str
    owner_id: str
    settings: SessionConfig
    host_address: Optional[str]
    open_public_connections: int
    state: NamedSessionState = NamedSessionState.PENDING
    players: set[str] = field(default_factory=set)

    def visible_to(self, query: SearchQuery) -> bool:
        if not self.settings.should_advertise:
            return False
        if self.settings.is_lan_match != query.is_lan_query:
            return False
        if query.presence and not self.settings.uses_presence:
            return False
        if self.state is NamedSessionState.IN_PROGRESS and not self.settings.allow_join_in_progress:
            return False
        return True

    def to_result(self) -> SearchResult:
        return SearchResult(
            session_id=self.session_id,
            owner_id=self.owner_id,
            attributes=self.settings.attributes(),
            open_public_connections=self.open_public_connections,
            max_public_connections=self.settings.num_public_connections,
            ping_ms=C.LAN_PING_MS,
        )


class LanNetwork:
    """Sessions advertised on one simulated LAN segment."""

    def __init__(self) -> None:
        self._sessions: dict[str, _Advertisement] = {}
        self._lock = threading.Lock()

    def advertise(self, advertisement: _Advertisement) -> None:
        with self._lock:
            self._sessions[advertisement.session_id] = advertisement

    def withdraw(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def search(self, query: SearchQuery, exclude_owner: str) -> list[SearchResult]:
        with self._lock:
            found = [
                ad.to_result()
                for ad in self._sessions.values()
                if ad.owner_id != exclude_owner and ad.visible_to(query)
            ]
        return found[:query.max_results]

    def reserve(self, session_id: str, player_id: str) -> tuple[JoinResult, Optional[str]]:
        """Take an open slot; returns the outcome and the host address."""
        with self._lock:
            ad = self._sessions.get(session_id)
            if ad is None:
                return JoinResult.SESSION_DOES_NOT_EXIST, None
            if player_id in ad.players:
                return JoinResult.ALREADY_IN_SESSION, None
            if ad.open_public_connections <= 0:
                return JoinResult.SESSION_IS_FULL, None
            if not ad.host_address:
                return JoinResult.COULD_NOT_RETRIEVE_ADDRESS, None
            ad.open_public_connections -= 1
            ad.players.add(player_id)
            return JoinResult.SUCCESS, ad.host_address

    def release(self, session_id: str, player_id: str) -> None:
        with self._lock:
            ad = self._sessions.get(session_id)
            if ad is not None and player_id in ad.players:
                ad.players.discard(player_id)
                ad.open_public_connections += 1

    def mark_started(self, session_id: str) -> None:
        with self._lock:
            ad = self._sessions.get(session_id)
            if ad is not None:
                ad.state = NamedSessionState.IN_PROGRESS

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


# =============================================================================
# BACKEND
# =============================================================================

class LanSessionBackend:
    """
    SessionBackend over a LanNetwork.

    Example:
        >>> network = LanNetwork()
        >>> host = LanSessionBackend(network, "host-1", LanConfig(host_address="10.0.0.2:7777"))
        >>> client = LanSessionBackend(network, "client-1", LanConfig())
    """

    def __init__(
        self,
        network: LanNetwork,
        player_id: str,
        config: Optional[LanConfig] = None,
    ) -> None:
        self._network = network
        self._log = logger.with_extra(player_id=player_id)
        self._config = config or LanConfig()
        self._named: dict[str, NamedSession] = {}
        self._available = True

    # -------------------------------------------------------------------------
    # IDENTITY
    # -------------------------------------------------------------------------

    @property
    def subsystem_name(self) -> str:
        return C.NULL_SUBSYSTEM_NAME

    @property
    def is_available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        self._available = available

    @property
    def named_sessions(self) -> dict[str, NamedSession]:
        return dict(self._named)

    def get_named_session(self, session_name: str) -> Optional[NamedSession]:
        return self._named.get(session_name)

    def get_resolved_connect_string(self, session_name: str) -> Optional[str]:
        session = self._named.get(session_name)
        if session is None or session.is_host:
            return None
        return session.connect_address

    # -------------------------------------------------------------------------
    # SUBMISSION
    # -------------------------------------------------------------------------

    def submit_create(
        self,
        local_player_id: str,
        session_name: str,
        config: SessionConfig,
        on_complete: CreateCompleteCallback,
    ) -> bool:
        if session_name in self._named:
            self._log.warning("Create rejected: name in use", session_name=session_name)
            return False
        return self._deliver(self._complete_create, local_player_id, session_name, config, on_complete)

    def submit_find(
        self,
        local_player_id: str,
        query: SearchQuery,
        on_complete: FindCompleteCallback,
    ) -> bool:
        return self._deliver(self._complete_find, local_player_id, query, on_complete)

    def submit_join(
        self,
        local_player_id: str,
        session_name: str,
        result: SearchResult,
        on_complete: JoinCompleteCallback,
    ) -> bool:
        return self._deliver(self._complete_join, local_player_id, session_name, result, on_complete)

    def submit_destroy(
        self,
        session_name: str,
        on_complete: DestroyCompleteCallback,
    ) -> bool:
        if session_name not in self._named:
            self._log.warning("Destroy rejected: no such session", session_name=session_name)
            return False
        return self._deliver(self._complete_destroy, session_name, on_complete)

    def submit_start(
        self,
        session_name: str,
        on_complete: StartCompleteCallback,
    ) -> bool:
        if session_name not in self._named:
            self._log.warning("Start rejected: no such session", session_name=session_name)
            return False
        return self._deliver(self._complete_start, session_name, on_complete)

    # -------------------------------------------------------------------------
    # DELIVERY
    # -------------------------------------------------------------------------

    def _deliver(self, fn: Callable[..., None], *args: Any) -> bool:
        if not self._available:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._log.warning("No running event loop; cannot deliver completions")
            return False
        loop.call_later(self._config.simulated_latency_ms / C.SECOND_MS, fn, *args)
        return True

    def _complete_create(
        self,
        local_player_id: str,
        session_name: str,
        config: SessionConfig,
        on_complete: CreateCompleteCallback,
    ) -> None:
        if session_name in self._named:
            on_complete(session_name, False)
            return
        session_id = uuid4().hex
        self._named[session_name] = NamedSession(
            session_name=session_name,
            session_id=session_id,
            is_host=True,
            settings=config,
            connect_address=self._config.host_address,
            registered_players=[local_player_id],
        )
        if config.should_advertise:
            self._network.advertise(_Advertisement(
                session_id=session_id,
                owner_id=local_player_id,
                settings=config,
                host_address=self._config.host_address,
                open_public_connections=config.num_public_connections,
            ))
        self._log.info("Session created", session_name=session_name, session_id=session_id)
        on_complete(session_name, True)

    def _complete_find(
        self,
        local_player_id: str,
        query: SearchQuery,
        on_complete: FindCompleteCallback,
    ) -> None:
        results = self._network.search(query, exclude_owner=local_player_id)
        self._log.debug("Search finished", result_count=len(results))
        on_complete(True, results)

    def _complete_join(
        self,
        local_player_id: str,
        session_name: str,
        result: SearchResult,
        on_complete: JoinCompleteCallback,
    ) -> None:
        if session_name in self._named:
            on_complete(session_name, JoinResult.ALREADY_IN_SESSION)
            return
        outcome, address = self._network.reserve(result.session_id, local_player_id)
        if outcome is JoinResult.SUCCESS:
            self._named[session_name] = NamedSession(
                session_name=session_name,
                session_id=result.session_id,
                is_host=False,
                connect_address=address,
                registered_players=[local_player_id],
            )
        self._log.info("Join finished", session_name=session_name, result=outcome.value)
        on_complete(session_name, outcome)

    def _complete_destroy(self, session_name: str, on_complete: DestroyCompleteCallback) -> None:
        session = self._named.pop(session_name, None)
        if session is None:
            on_complete(session_name, False)
            return
        if session.is_host:
            self._network.withdraw(session.session_id)
        else:
            for player_id in session.registered_players:
                self._network.release(session.session_id, player_id)
        self._log.info("Session destroyed", session_name=session_name, session_id=session.session_id)
        on_complete(session_name, True)

    def _complete_start(self, session_name: str, on_complete: StartCompleteCallback) -> None:
        session = self._named.get(session_name)
        if session is None:
            on_complete(session_name, False)
            return
        session.state = NamedSessionState.IN_PROGRESS
        if session.is_host:
            self._network.mark_started(session.session_id)
        on_complete(session_name, True)
