"""
Shared fixtures: a scripted backend double and an event recorder.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import pytest

from matchmesh.core import constants as C
from matchmesh.core.config import OrchestratorConfig
from matchmesh.observability.metrics import MetricsCollector
from matchmesh.session.backend import NamedSession
from matchmesh.session.events import SessionEvents
from matchmesh.session.orchestrator import SessionOrchestrator
from matchmesh.session.settings import JoinResult, SearchResult

OPERATIONS = ("create", "find", "join", "destroy", "start")


class ScriptedBackend:
    """
    SessionBackend double driven by the test.

    Submissions are recorded and their callbacks held until the test calls
    one of the complete_* helpers.
    """

    def __init__(self, subsystem_name: str = C.NULL_SUBSYSTEM_NAME) -> None:
        self._subsystem_name = subsystem_name
        self.available = True
        self.accept = {op: True for op in OPERATIONS}
        self.raise_on: set[str] = set()
        self.sessions: dict[str, NamedSession] = {}
        self.connect_string: Optional[str] = None
        self.submissions: list[tuple[str, tuple[Any, ...]]] = []
        self.callbacks: dict[str, list[Callable[..., None]]] = {op: [] for op in OPERATIONS}

    @property
    def subsystem_name(self) -> str:
        return self._subsystem_name

    @property
    def is_available(self) -> bool:
        return self.available

    def get_named_session(self, session_name: str) -> Optional[NamedSession]:
        return self.sessions.get(session_name)

    def get_resolved_connect_string(self, session_name: str) -> Optional[str]:
        return self.connect_string

    def submit_create(self, local_player_id, session_name, config, on_complete) -> bool:
        return self._record("create", on_complete, local_player_id, session_name, config)

    def submit_find(self, local_player_id, query, on_complete) -> bool:
        return self._record("find", on_complete, local_player_id, query)

    def submit_join(self, local_player_id, session_name, result, on_complete) -> bool:
        return self._record("join", on_complete, local_player_id, session_name, result)

    def submit_destroy(self, session_name, on_complete) -> bool:
        return self._record("destroy", on_complete, session_name)

    def submit_start(self, session_name, on_complete) -> bool:
        return self._record("start", on_complete, session_name)

    def _record(self, op: str, on_complete: Callable[..., None], *args: Any) -> bool:
        self.submissions.append((op, args))
        if op in self.raise_on:
            raise RuntimeError(f"{op} exploded")
        if not self.accept[op]:
            return False
        self.callbacks[op].append(on_complete)
        return True

    # -------------------------------------------------------------------------
    # TEST DRIVERS
    # -------------------------------------------------------------------------

    def submitted(self, op: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.submissions if name == op]

    def add_session(self, session_name: str = C.DEFAULT_SESSION_NAME) -> None:
        self.sessions[session_name] = NamedSession(
            session_name=session_name,
            session_id="existing",
            is_host=True,
        )

    def complete_create(self, success: bool = True, session_name: str = C.DEFAULT_SESSION_NAME) -> None:
        callback = self.callbacks["create"].pop(0)
        if success:
            self.add_session(session_name)
        callback(session_name, success)

    def complete_find(self, results: list[SearchResult], success: bool = True) -> None:
        self.callbacks["find"].pop(0)(success, results)

    def complete_join(self, result: JoinResult, session_name: str = C.DEFAULT_SESSION_NAME) -> None:
        self.callbacks["join"].pop(0)(session_name, result)

    def complete_destroy(self, success: bool = True, session_name: str = C.DEFAULT_SESSION_NAME) -> None:
        callback = self.callbacks["destroy"].pop(0)
        if success:
            self.sessions.pop(session_name, None)
        callback(session_name, success)

    def complete_start(self, success: bool = True, session_name: str = C.DEFAULT_SESSION_NAME) -> None:
        self.callbacks["start"].pop(0)(session_name, success)


class EventRecorder:
    """Records every completion event in delivery order."""

    def __init__(self, events: SessionEvents) -> None:
        self.log: list[tuple[str, tuple[Any, ...]]] = []
        events.on_create_complete.add(lambda *a: self.log.append(("create", a)))
        events.on_find_complete.add(lambda *a: self.log.append(("find", a)))
        events.on_join_complete.add(lambda *a: self.log.append(("join", a)))
        events.on_destroy_complete.add(lambda *a: self.log.append(("destroy", a)))
        events.on_start_complete.add(lambda *a: self.log.append(("start", a)))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.log]


def make_result(
    session_id: str = "s-1",
    match_type: str = "FreeForAll",
    owner_id: str = "host-1",
    open_slots: int = 4,
) -> SearchResult:
    return SearchResult(
        session_id=session_id,
        owner_id=owner_id,
        attributes={C.MATCH_TYPE_KEY: match_type},
        open_public_connections=open_slots,
        max_public_connections=4,
    )


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def orchestrator(backend: ScriptedBackend, metrics: MetricsCollector) -> SessionOrchestrator:
    return SessionOrchestrator(backend, OrchestratorConfig(), metrics=metrics)


@pytest.fixture
def recorder(orchestrator: SessionOrchestrator) -> EventRecorder:
    return EventRecorder(orchestrator.events)
