"""
Unit Tests: Session Orchestrator

Tests:
    - Create / Find / Join / Destroy / Start submission and completion
    - Failure paths: absent backend, synchronous rejection, raising backend
    - Destroy-then-create chaining and event order
    - Stale and duplicate completions
    - Listener re-entrancy and metrics
"""

import json
import logging

import pytest

from matchmesh.core import constants as C
from matchmesh.core.config import OrchestratorConfig
from matchmesh.core.errors import ErrorCode
from matchmesh.core.types import OperationKind
from matchmesh.observability.logging import JsonFormatter
from matchmesh.session.orchestrator import SessionOrchestrator
from matchmesh.session.pending import SlotState
from matchmesh.session.settings import JoinResult, SearchQuery
from matchmesh.tests.conftest import EventRecorder, ScriptedBackend, make_result


class InlineBackend(ScriptedBackend):
    """Settles destroy, and optionally create, before submit_* returns."""

    def __init__(self, inline_create: bool = True) -> None:
        super().__init__()
        self.inline_create = inline_create

    def submit_destroy(self, session_name, on_complete) -> bool:
        self.submissions.append(("destroy", (session_name,)))
        self.sessions.pop(session_name, None)
        on_complete(session_name, True)
        return True

    def submit_create(self, local_player_id, session_name, config, on_complete) -> bool:
        if not self.inline_create:
            return super().submit_create(local_player_id, session_name, config, on_complete)
        self.submissions.append(("create", (local_player_id, session_name, config)))
        self.add_session(session_name)
        on_complete(session_name, True)
        return True


class TestCreateSession:
    """Tests for create_session()."""

    def test_submits_lan_settings(self, orchestrator, backend):
        result = orchestrator.create_session(4, "Ranked")

        assert result.is_ok()
        assert result.value.kind is OperationKind.CREATE
        (player, name, config), = backend.submitted("create")
        assert player == "player-1"
        assert name == C.DEFAULT_SESSION_NAME
        assert config.num_public_connections == 4
        assert config.match_type == "Ranked"
        assert config.is_lan_match is True
        assert config.should_advertise and config.allow_join_in_progress
        assert config.uses_presence and config.allow_join_via_presence
        assert config.use_lobbies_if_available
        assert config.attributes() == {"MatchType": "Ranked"}
        assert orchestrator.last_session_config == config

    def test_online_backend_is_not_lan(self, metrics):
        backend = ScriptedBackend(subsystem_name=C.REDIS_SUBSYSTEM_NAME)
        orchestrator = SessionOrchestrator(backend, metrics=metrics)

        orchestrator.create_session(2, "Duel")

        assert orchestrator.lan_mode is False
        assert backend.submitted("create")[0][2].is_lan_match is False

    def test_success_emits_one_event(self, orchestrator, backend, recorder):
        orchestrator.create_session(4, "Ranked")
        backend.complete_create(True)

        assert recorder.log == [("create", (True,))]
        assert not orchestrator.is_pending(OperationKind.CREATE)

    def test_backend_failure_is_forwarded(self, orchestrator, backend, recorder):
        orchestrator.create_session(4, "Ranked")
        backend.complete_create(False)

        assert recorder.log == [("create", (False,))]

    def test_absent_backend(self, metrics):
        orchestrator = SessionOrchestrator(None, metrics=metrics)
        recorder = EventRecorder(orchestrator.events)

        result = orchestrator.create_session(4, "Ranked")

        assert result.is_err()
        assert result.error.code is ErrorCode.BACKEND_UNAVAILABLE
        assert recorder.log == [("create", (False,))]

    def test_unavailable_backend(self, orchestrator, backend, recorder):
        backend.available = False

        result = orchestrator.create_session(4, "Ranked")

        assert result.error.code is ErrorCode.BACKEND_UNAVAILABLE
        assert backend.submissions == []
        assert recorder.log == [("create", (False,))]

    def test_synchronous_rejection(self, orchestrator, backend, recorder):
        backend.accept["create"] = False

        result = orchestrator.create_session(4, "Ranked")

        assert result.error.code is ErrorCode.BACKEND_SUBMISSION_REJECTED
        assert recorder.log == [("create", (False,))]
        assert orchestrator.slot_state(OperationKind.CREATE) is SlotState.IDLE

    def test_raising_backend_counts_as_rejection(self, orchestrator, backend, recorder):
        backend.raise_on.add("create")

        result = orchestrator.create_session(4, "Ranked")

        assert result.error.code is ErrorCode.BACKEND_SUBMISSION_REJECTED
        assert recorder.log == [("create", (False,))]

    @pytest.mark.parametrize("connections,match_type", [(0, "Ranked"), (-1, "Ranked"), (4, "")])
    def test_invalid_arguments_emit_nothing(self, orchestrator, backend, recorder, connections, match_type):
        result = orchestrator.create_session(connections, match_type)

        assert result.error.code is ErrorCode.REQUEST_INVALID_ARGUMENT
        assert backend.submissions == []
        assert recorder.log == []

    def test_second_create_while_outstanding_is_refused(self, orchestrator, backend, recorder):
        first = orchestrator.create_session(4, "Ranked")
        second = orchestrator.create_session(4, "Ranked")

        assert first.is_ok()
        assert second.error.code is ErrorCode.REQUEST_OUTSTANDING
        assert len(backend.submitted("create")) == 1

        backend.complete_create(True)
        assert recorder.log == [("create", (True,))]

    def test_slot_reusable_after_completion(self, orchestrator, backend, recorder):
        orchestrator.create_session(4, "Ranked")
        backend.complete_create(False)
        again = orchestrator.create_session(2, "Duel")

        assert again.is_ok()
        assert len(backend.submitted("create")) == 2


class TestDestroyThenCreate:
    """Create while a session exists destroys it first."""

    def test_destroy_then_create(self, orchestrator, backend, recorder):
        backend.add_session()

        result = orchestrator.create_session(8, "Duel")

        assert result.is_ok()
        assert backend.submitted("destroy") == [(C.DEFAULT_SESSION_NAME,)]
        assert backend.submitted("create") == []
        assert orchestrator.slot_state(OperationKind.CREATE) is SlotState.DEFERRED
        assert orchestrator.deferred_create.match_type == "Duel"

        backend.complete_destroy(True)

        (_, _, config), = backend.submitted("create")
        assert config.num_public_connections == 8
        assert config.match_type == "Duel"
        assert recorder.log == [("destroy", (True,))]
        assert orchestrator.slot_state(OperationKind.CREATE) is SlotState.AWAITING
        assert orchestrator.pending_requests() == [result.value]

        backend.complete_create(True)
        assert recorder.log == [("destroy", (True,)), ("create", (True,))]

    def test_failed_destroy_fails_create(self, orchestrator, backend, recorder):
        backend.add_session()
        orchestrator.create_session(8, "Duel")

        backend.complete_destroy(False)

        assert backend.submitted("create") == []
        assert recorder.log == [("destroy", (False,)), ("create", (False,))]
        assert orchestrator.deferred_create is None
        assert orchestrator.pending_requests() == []

    def test_rejected_destroy_fails_create(self, orchestrator, backend, recorder):
        backend.add_session()
        backend.accept["destroy"] = False

        result = orchestrator.create_session(8, "Duel")

        assert result.error.code is ErrorCode.BACKEND_SUBMISSION_REJECTED
        assert recorder.log == [("destroy", (False,)), ("create", (False,))]
        assert orchestrator.pending_requests() == []

    def test_waits_for_destroy_already_in_flight(self, orchestrator, backend, recorder):
        backend.add_session()
        orchestrator.destroy_session()

        result = orchestrator.create_session(2, "Duel")

        assert result.is_ok()
        assert len(backend.submitted("destroy")) == 1

        backend.complete_destroy(True)
        assert len(backend.submitted("create")) == 1
        assert recorder.log == [("destroy", (True,))]

    def test_chained_create_uses_deferred_arguments(self, orchestrator, backend, recorder):
        backend.add_session()
        orchestrator.create_session(4, "Ranked")

        refused = orchestrator.create_session(16, "Brawl")
        backend.complete_destroy(True)

        assert refused.error.code is ErrorCode.REQUEST_OUTSTANDING
        (_, _, config), = backend.submitted("create")
        assert (config.num_public_connections, config.match_type) == (4, "Ranked")

    def test_rejected_chained_create(self, orchestrator, backend, recorder):
        backend.add_session()
        backend.accept["create"] = False
        orchestrator.create_session(2, "Duel")

        backend.complete_destroy(True)

        assert recorder.log == [("destroy", (True,)), ("create", (False,))]
        assert orchestrator.pending_requests() == []

    def test_listeners_see_destroy_before_chained_create(self, orchestrator, backend):
        seen = []
        orchestrator.events.on_destroy_complete.add(lambda ok: seen.append(("destroy", ok)))
        orchestrator.events.on_create_complete.add(lambda ok: seen.append(("create", ok)))
        backend.add_session()
        backend.accept["create"] = False
        orchestrator.create_session(2, "Duel")

        backend.complete_destroy(True)

        assert seen == [("destroy", True), ("create", False)]

    def test_chain_settled_inside_submit_returns_token(self, metrics):
        backend = InlineBackend()
        backend.add_session()
        orchestrator = SessionOrchestrator(backend, OrchestratorConfig(), metrics=metrics)
        recorder = EventRecorder(orchestrator.events)

        result = orchestrator.create_session(4, "Ranked")

        assert result.is_ok()
        assert result.value.kind is OperationKind.CREATE
        assert recorder.log == [("destroy", (True,)), ("create", (True,))]
        assert orchestrator.pending_requests() == []

    def test_inline_destroy_leaves_chained_create_pending(self, metrics):
        backend = InlineBackend(inline_create=False)
        backend.add_session()
        orchestrator = SessionOrchestrator(backend, OrchestratorConfig(), metrics=metrics)
        recorder = EventRecorder(orchestrator.events)

        result = orchestrator.create_session(4, "Ranked")

        assert orchestrator.pending_requests() == [result.value]
        backend.complete_create(True)
        assert recorder.log == [("destroy", (True,)), ("create", (True,))]


class TestFindSessions:
    """Tests for find_sessions()."""

    def test_submits_query(self, orchestrator, backend):
        result = orchestrator.find_sessions(10)

        assert result.is_ok()
        (player, query), = backend.submitted("find")
        assert player == "player-1"
        assert query == SearchQuery(max_results=10, is_lan_query=True, presence=True)

    def test_results_delivered(self, orchestrator, backend, recorder):
        results = [make_result("a"), make_result("b", match_type="Ranked")]
        orchestrator.find_sessions(10)
        backend.complete_find(results)

        assert recorder.log == [("find", (results, True))]

    def test_empty_result_set_is_failure(self, orchestrator, backend, recorder):
        orchestrator.find_sessions(10)
        backend.complete_find([], success=True)

        assert recorder.log == [("find", ([], False))]

    def test_results_capped_to_max(self, orchestrator, backend, recorder):
        results = [make_result(str(i)) for i in range(5)]
        orchestrator.find_sessions(2)
        backend.complete_find(results)

        (delivered, success), = [args for _, args in recorder.log]
        assert delivered == results[:2]
        assert success is True

    def test_backend_failure_with_results(self, orchestrator, backend, recorder):
        results = [make_result("a")]
        orchestrator.find_sessions(10)
        backend.complete_find(results, success=False)

        assert recorder.log == [("find", (results, False))]

    def test_invalid_max_results(self, orchestrator, backend, recorder):
        result = orchestrator.find_sessions(0)

        assert result.error.code is ErrorCode.REQUEST_INVALID_ARGUMENT
        assert recorder.log == []

    def test_absent_backend(self, metrics):
        orchestrator = SessionOrchestrator(None, metrics=metrics)
        recorder = EventRecorder(orchestrator.events)

        result = orchestrator.find_sessions(10)

        assert result.error.code is ErrorCode.BACKEND_UNAVAILABLE
        assert recorder.log == [("find", ([], False))]

    def test_rejection(self, orchestrator, backend, recorder):
        backend.accept["find"] = False

        result = orchestrator.find_sessions(10)

        assert result.is_err()
        assert recorder.log == [("find", ([], False))]


class TestJoinSession:
    """Tests for join_session()."""

    def test_submits_result_under_session_name(self, orchestrator, backend):
        target = make_result("a")

        result = orchestrator.join_session(target)

        assert result.is_ok()
        assert backend.submitted("join") == [("player-1", C.DEFAULT_SESSION_NAME, target)]

    @pytest.mark.parametrize("code", list(JoinResult))
    def test_result_forwarded_verbatim(self, orchestrator, backend, recorder, code):
        orchestrator.join_session(make_result())
        backend.complete_join(code)

        assert recorder.log == [("join", (code,))]

    def test_absent_backend(self, metrics):
        orchestrator = SessionOrchestrator(None, metrics=metrics)
        recorder = EventRecorder(orchestrator.events)

        result = orchestrator.join_session(make_result())

        assert result.error.code is ErrorCode.BACKEND_UNAVAILABLE
        assert recorder.log == [("join", (JoinResult.UNKNOWN_ERROR,))]

    def test_rejection(self, orchestrator, backend, recorder):
        backend.accept["join"] = False

        orchestrator.join_session(make_result())

        assert recorder.log == [("join", (JoinResult.UNKNOWN_ERROR,))]

    def test_not_a_search_result(self, orchestrator, backend, recorder):
        result = orchestrator.join_session("GameSession")

        assert result.error.code is ErrorCode.REQUEST_INVALID_ARGUMENT
        assert backend.submissions == []
        assert recorder.log == []

    def test_duplicate_completion_dropped(self, orchestrator, backend, recorder):
        orchestrator.join_session(make_result())
        callback = backend.callbacks["join"][0]

        callback(C.DEFAULT_SESSION_NAME, JoinResult.SUCCESS)
        callback(C.DEFAULT_SESSION_NAME, JoinResult.SUCCESS)

        assert recorder.log == [("join", (JoinResult.SUCCESS,))]

    def test_completion_of_older_request_dropped(self, orchestrator, backend, recorder):
        orchestrator.join_session(make_result("a"))
        old = backend.callbacks["join"].pop(0)
        old(C.DEFAULT_SESSION_NAME, JoinResult.SESSION_IS_FULL)
        orchestrator.join_session(make_result("b"))

        old(C.DEFAULT_SESSION_NAME, JoinResult.SUCCESS)

        assert recorder.log == [("join", (JoinResult.SESSION_IS_FULL,))]
        assert orchestrator.is_pending(OperationKind.JOIN)


class TestResolveConnectString:
    """Tests for resolve_connect_string()."""

    def test_resolved(self, orchestrator, backend):
        backend.connect_string = "10.0.0.2:7777"

        assert orchestrator.resolve_connect_string().unwrap() == "10.0.0.2:7777"

    def test_unresolved(self, orchestrator):
        result = orchestrator.resolve_connect_string()

        assert result.error.code is ErrorCode.BACKEND_ADDRESS_UNRESOLVED

    def test_absent_backend(self, metrics):
        orchestrator = SessionOrchestrator(None, metrics=metrics)

        assert orchestrator.resolve_connect_string().error.code is ErrorCode.BACKEND_UNAVAILABLE


class TestDestroyAndStart:
    """Tests for destroy_session() and start_session()."""

    @pytest.mark.parametrize("success", [True, False])
    def test_destroy_completion(self, orchestrator, backend, recorder, success):
        backend.add_session()
        orchestrator.destroy_session()
        backend.complete_destroy(success)

        assert recorder.log == [("destroy", (success,))]

    def test_destroy_absent_backend(self, metrics):
        orchestrator = SessionOrchestrator(None, metrics=metrics)
        recorder = EventRecorder(orchestrator.events)

        assert orchestrator.destroy_session().is_err()
        assert recorder.log == [("destroy", (False,))]

    def test_destroy_rejected(self, orchestrator, backend, recorder):
        backend.accept["destroy"] = False

        assert orchestrator.destroy_session().is_err()
        assert recorder.log == [("destroy", (False,))]

    @pytest.mark.parametrize("success", [True, False])
    def test_start_completion(self, orchestrator, backend, recorder, success):
        orchestrator.start_session()
        backend.complete_start(success)

        assert backend.submitted("start") == [(C.DEFAULT_SESSION_NAME,)]
        assert recorder.log == [("start", (success,))]

    def test_start_absent_backend(self, metrics):
        orchestrator = SessionOrchestrator(None, metrics=metrics)
        recorder = EventRecorder(orchestrator.events)

        assert orchestrator.start_session().is_err()
        assert recorder.log == [("start", (False,))]


class TestIndependentKinds:
    """Different operation kinds may be outstanding together."""

    def test_create_and_find_outstanding_together(self, orchestrator, backend, recorder):
        assert orchestrator.create_session(4, "Ranked").is_ok()
        assert orchestrator.find_sessions(5).is_ok()
        assert len(orchestrator.pending_requests()) == 2

        backend.complete_find([make_result()])
        backend.complete_create(True)

        assert recorder.kinds() == ["find", "create"]

    def test_has_session(self, orchestrator, backend):
        assert not orchestrator.has_session()
        backend.add_session()
        assert orchestrator.has_session()

    def test_custom_session_name(self, backend, metrics):
        config = OrchestratorConfig(session_name="Party", local_player_id="p-9")
        orchestrator = SessionOrchestrator(backend, config, metrics=metrics)

        orchestrator.create_session(2, "Duel")

        assert backend.submitted("create")[0][:2] == ("p-9", "Party")


class TestListeners:
    """Listener behaviour during event delivery."""

    def test_listener_may_start_next_operation(self, orchestrator, backend, recorder):
        orchestrator.events.on_create_complete.add(lambda ok: orchestrator.start_session())

        orchestrator.create_session(4, "Ranked")
        backend.complete_create(True)

        assert len(backend.submitted("start")) == 1
        backend.complete_start(True)
        assert recorder.kinds() == ["create", "start"]

    def test_raising_listener_does_not_block_others(self, orchestrator, backend, recorder):
        def explode(ok):
            raise ValueError("listener bug")

        orchestrator.events.on_create_complete.add(explode)
        orchestrator.create_session(4, "Ranked")
        backend.complete_create(True)

        assert recorder.log == [("create", (True,))]

    def test_listener_logs_carry_request_token(self, orchestrator, backend):
        lines = []

        def log_from_listener(ok):
            record = logging.LogRecord("listener", logging.INFO, __file__, 1, "created", None, None)
            lines.append(json.loads(JsonFormatter().format(record)))

        orchestrator.events.on_create_complete.add(log_from_listener)
        token = orchestrator.create_session(4, "Ranked").value
        backend.complete_create(True)

        (line,) = lines
        assert line["token"] == str(token)
        assert line["operation"] == "create"

    def test_log_context_cleared_after_completion(self, orchestrator, backend):
        orchestrator.create_session(4, "Ranked")
        backend.complete_create(True)

        record = logging.LogRecord("after", logging.INFO, __file__, 1, "idle", None, None)
        assert "token" not in json.loads(JsonFormatter().format(record))

    def test_events_delivered_after_slot_released(self, orchestrator, backend):
        states = []
        orchestrator.events.on_create_complete.add(
            lambda ok: states.append(orchestrator.slot_state(OperationKind.CREATE))
        )

        orchestrator.create_session(4, "Ranked")
        backend.complete_create(True)

        assert states == [SlotState.IDLE]


class TestMetrics:
    """Request outcome metrics."""

    def test_outcomes_counted(self, orchestrator, backend, metrics):
        orchestrator.create_session(4, "Ranked")
        backend.complete_create(True)
        orchestrator.find_sessions(0)

        requests = metrics.counter("matchmesh_requests_total")
        assert requests.get(operation="create", outcome="success") == 1
        assert requests.get(operation="find", outcome="refused") == 1

    def test_outstanding_gauge_returns_to_zero(self, orchestrator, backend, metrics):
        gauge = metrics.gauge("matchmesh_requests_outstanding")

        orchestrator.find_sessions(5)
        assert gauge.get(operation="find") == 1

        backend.complete_find([])
        assert gauge.get(operation="find") == 0
        assert metrics.histogram("matchmesh_request_latency_seconds").count(operation="find") == 1
