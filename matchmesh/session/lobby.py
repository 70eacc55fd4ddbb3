"""
Session Lobby: Host / Join Affordances Driven by Completion Events

Caller-side collaborator of the orchestrator:

    host()  -> create_session(...)  -> on_create_complete -> server travel
    join()  -> find_sessions(...)   -> on_find_complete   -> join_session(first match)
                                    -> on_join_complete   -> resolve address -> client travel

Each affordance is disabled while its request is in flight and re-enabled
on any failure, so the user can retry.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Optional, Protocol, runtime_checkable

from matchmesh.core.config import LobbyConfig
from matchmesh.observability.logging import StructuredLogger
from matchmesh.session.orchestrator import SessionOrchestrator
from matchmesh.session.settings import JoinResult, SearchResult

logger = StructuredLogger("matchmesh.session.lobby")


@runtime_checkable
class TravelHandler(Protocol):
    """Moves the local player to a map or server."""

    @abstractmethod
    def server_travel(self, url: str) -> None:
        """Host: open the lobby map as a listen server."""
        ...

    @abstractmethod
    def client_travel(self, address: str) -> None:
        """Client: connect to a resolved host address."""
        ...


class LoggingTravelHandler:
    """TravelHandler that records destinations and logs them."""

    def __init__(self) -> None:
        self.server_urls: list[str] = []
        self.client_addresses: list[str] = []

    def server_travel(self, url: str) -> None:
        logger.info("Server travel", url=url)
        self.server_urls.append(url)

    def client_travel(self, address: str) -> None:
        logger.info("Client travel", address=address)
        self.client_addresses.append(address)


class SessionLobby:
    """
    Host and join buttons bound to a session orchestrator.

    Usage:
        lobby = SessionLobby(orchestrator, LobbyConfig(), LoggingTravelHandler())
        lobby.setup()
        lobby.host()
        ...
        lobby.teardown()
    """

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        config: Optional[LobbyConfig] = None,
        travel: Optional[TravelHandler] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._config = config or LobbyConfig()
        self._travel = travel or LoggingTravelHandler()
        self._handles: list[tuple[str, int]] = []
        self.host_enabled = True
        self.join_enabled = True

    @property
    def config(self) -> LobbyConfig:
        return self._config

    @property
    def travel(self) -> TravelHandler:
        return self._travel

    @property
    def is_bound(self) -> bool:
        return bool(self._handles)

    def setup(self) -> None:
        """Bind completion listeners; idempotent."""
        if self._handles:
            return
        events = self._orchestrator.events
        self._handles = [
            ("on_create_complete", events.on_create_complete.add(self.on_create_complete)),
            ("on_find_complete", events.on_find_complete.add(self.on_find_complete)),
            ("on_join_complete", events.on_join_complete.add(self.on_join_complete)),
            ("on_destroy_complete", events.on_destroy_complete.add(self.on_destroy_complete)),
            ("on_start_complete", events.on_start_complete.add(self.on_start_complete)),
        ]

    def teardown(self) -> None:
        events = self._orchestrator.events
        for attr, handle in self._handles:
            getattr(events, attr).remove(handle)
        self._handles = []

    # -------------------------------------------------------------------------
    # AFFORDANCES
    # -------------------------------------------------------------------------

    def host(self) -> bool:
        if not self.host_enabled:
            return False
        self.host_enabled = False
        result = self._orchestrator.create_session(
            self._config.num_public_connections,
            self._config.match_type,
        )
        if result.is_err():
            logger.warning("Host request refused", error=result.error.to_dict())
            self.host_enabled = True
            return False
        return True

    def join(self) -> bool:
        if not self.join_enabled:
            return False
        self.join_enabled = False
        result = self._orchestrator.find_sessions(self._config.max_search_results)
        if result.is_err():
            logger.warning("Find request refused", error=result.error.to_dict())
            self.join_enabled = True
            return False
        return True

    # -------------------------------------------------------------------------
    # COMPLETION LISTENERS
    # -------------------------------------------------------------------------

    def on_create_complete(self, was_successful: bool) -> None:
        if not was_successful:
            self.host_enabled = True
            return
        self._travel.server_travel(self._config.listen_url)

    def on_find_complete(self, results: list[SearchResult], was_successful: bool) -> None:
        if self.join_enabled:
            # Not our search
            return
        for result in results:
            if result.match_type != self._config.match_type:
                continue
            joined = self._orchestrator.join_session(result)
            if joined.is_ok():
                return
            logger.warning("Join request refused", error=joined.error.to_dict())
            break
        self.join_enabled = True

    def on_join_complete(self, result: JoinResult) -> None:
        if result is not JoinResult.SUCCESS:
            logger.info("Join failed", result=result.value)
            self.join_enabled = True
            return
        address = self._orchestrator.resolve_connect_string()
        if address.is_err():
            logger.warning("Could not resolve host address", error=address.error.to_dict())
            self.join_enabled = True
            return
        self._travel.client_travel(address.value)

    def on_destroy_complete(self, was_successful: bool) -> None:
        logger.debug("Session destroyed", success=was_successful)

    def on_start_complete(self, was_successful: bool) -> None:
        logger.debug("Session started", success=was_successful)
