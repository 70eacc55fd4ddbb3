"""
Session Orchestrator: Create / Find / Join / Destroy Against a Backend

Per operation kind (independently):

    IDLE -> REQUESTED -> ACCEPTED -> AWAITING_CALLBACK -> COMPLETED -> IDLE
                      \\-> REJECTED -> COMPLETED -> IDLE

Create additionally:

    IDLE -> DEFERRED_PENDING_DESTROY -> (destroy succeeded) -> REQUESTED
                                     \\-> (destroy failed)   -> COMPLETED(false)

Rules:
    - Every operation returns immediately with Result[RequestToken, error].
    - Every request that enters the state machine ends in exactly one
      completion event; precondition violations (bad arguments, a request
      of the same kind already outstanding) return Err and emit nothing.
    - A backend completion is honoured only if its token still owns the
      slot of its kind; late or duplicate completions are dropped.
    - Create while a session exists destroys it first and replays the
      create with the saved arguments once the destroy succeeds.
    - Events are queued and delivered in order after state is updated,
      so DestroyComplete always precedes the chained CreateComplete.

Thread Safety:
    State transitions run under a re-entrant lock (single writer).
    Listeners run outside the lock and may call back into the orchestrator.
"""

from __future__ import annotations

import asyncio
import functools
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, TypeVar

from matchmesh.core import constants as C
from matchmesh.core.config import OrchestratorConfig
from matchmesh.core.errors import (
    BackendError,
    MatchMeshError,
    RequestError,
    SearchError,
)
from matchmesh.core.types import Result, Ok, Err, OperationKind, RequestToken
from matchmesh.observability.logging import StructuredLogger
from matchmesh.observability.metrics import MetricsCollector
from matchmesh.session.backend import SessionBackend
from matchmesh.session.events import MulticastDelegate, SessionEvents
from matchmesh.session.pending import PendingRequest, PendingRequestTable, SlotState
from matchmesh.session.settings import (
    JoinResult,
    SearchQuery,
    SearchResult,
    SessionConfig,
)

T = TypeVar("T")

OperationResult = Result[RequestToken, MatchMeshError]


@dataclass(frozen=True, slots=True)
class DeferredCreate:
    """A create waiting for the in-flight destroy of the previous session."""
    token: RequestToken
    num_public_connections: int
    match_type: str


class SessionOrchestrator:
    """
    Drives session operations against an injected backend capability.

    Usage:
        orchestrator = SessionOrchestrator(backend, OrchestratorConfig())
        orchestrator.events.on_create_complete.add(on_created)

        result = orchestrator.create_session(4, "Ranked")
        if result.is_err():
            handle(result.error)
    """

    def __init__(
        self,
        backend: Optional[SessionBackend],
        config: Optional[OrchestratorConfig] = None,
        events: Optional[SessionEvents] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._backend = backend
        self._config = config or OrchestratorConfig()
        self._events = events or SessionEvents()
        self._pending = PendingRequestTable()
        self._deferred_create: Optional[DeferredCreate] = None
        self._replayed: Optional[tuple[RequestToken, OperationResult]] = None
        self._last_config: Optional[SessionConfig] = None

        self._lock = threading.RLock()
        self._outbox: deque[tuple[MulticastDelegate, tuple[Any, ...]]] = deque()
        self._flushing = False

        self._log = StructuredLogger("matchmesh.session.orchestrator").with_extra(
            session_name=self._config.session_name,
            player_id=self._config.local_player_id,
        )

        collector = metrics or MetricsCollector.get_instance()
        self._requests_total = collector.counter(
            "matchmesh_requests_total",
            ["operation", "outcome"],
            "Session requests by terminal outcome",
        )
        self._requests_outstanding = collector.gauge(
            "matchmesh_requests_outstanding",
            ["operation"],
            "Session requests currently holding their slot",
        )
        self._request_latency = collector.histogram(
            "matchmesh_request_latency_seconds",
            ["operation"],
            "Time from registration to release of a session request",
        )

    # -------------------------------------------------------------------------
    # PUBLIC OPERATIONS
    # -------------------------------------------------------------------------

    def create_session(self, num_public_connections: int, match_type: str) -> OperationResult:
        """
        Host a session under the well-known name.

        If a session already exists it is destroyed first; the create is
        replayed with these arguments once that destroy succeeds.
        """
        return self._run(self._create_session, num_public_connections, match_type)

    def find_sessions(self, max_results: int) -> OperationResult:
        """Search for advertised sessions; results are not filtered here."""
        return self._run(self._find_sessions, max_results)

    def join_session(self, result: SearchResult) -> OperationResult:
        """Join a session previously delivered by a find completion."""
        return self._run(self._join_session, result)

    def destroy_session(self) -> OperationResult:
        """Tear down the session registered under the well-known name."""
        return self._run(self._destroy_session)

    def start_session(self) -> OperationResult:
        """Mark the hosted session as started."""
        return self._run(self._start_session)

    def resolve_connect_string(self) -> Result[str, MatchMeshError]:
        """Connect address for the joined session (valid after a successful join)."""
        with self._lock:
            if not self._backend_available():
                return Err(BackendError.unavailable("resolve_connect_string"))
            address = self._backend.get_resolved_connect_string(self._config.session_name)
            if not address:
                return Err(BackendError.address_unresolved(self._config.session_name))
            return Ok(address)

    # -------------------------------------------------------------------------
    # INTROSPECTION
    # -------------------------------------------------------------------------

    @property
    def events(self) -> SessionEvents:
        return self._events

    @property
    def backend(self) -> Optional[SessionBackend]:
        return self._backend

    @property
    def session_name(self) -> str:
        return self._config.session_name

    @property
    def lan_mode(self) -> bool:
        """True iff the backend is the offline/LAN-only implementation."""
        return (
            self._backend is not None
            and self._backend.subsystem_name == C.NULL_SUBSYSTEM_NAME
        )

    @property
    def last_session_config(self) -> Optional[SessionConfig]:
        return self._last_config

    @property
    def deferred_create(self) -> Optional[DeferredCreate]:
        with self._lock:
            return self._deferred_create

    def has_session(self) -> bool:
        with self._lock:
            return (
                self._backend_available()
                and self._backend.get_named_session(self._config.session_name) is not None
            )

    def is_pending(self, kind: OperationKind) -> bool:
        with self._lock:
            return self._pending.is_outstanding(kind)

    def slot_state(self, kind: OperationKind) -> SlotState:
        with self._lock:
            return self._pending.state(kind)

    def pending_requests(self) -> list[RequestToken]:
        with self._lock:
            return self._pending.outstanding()

    # -------------------------------------------------------------------------
    # OPERATION BODIES (called with the lock held)
    # -------------------------------------------------------------------------

    def _create_session(self, num_public_connections: int, match_type: str) -> OperationResult:
        kind = OperationKind.CREATE
        if num_public_connections < 1:
            return self._precondition(kind, RequestError.invalid_argument(
                "num_public_connections", num_public_connections, "must be >= 1",
            ))
        if not match_type:
            return self._precondition(kind, RequestError.invalid_argument(
                "match_type", match_type, "must be non-empty",
            ))
        outstanding = self._check_idle(kind)
        if outstanding is not None:
            return outstanding
        if not self._backend_available():
            return self._unavailable(kind)

        if self._backend.get_named_session(self._config.session_name) is not None:
            token = self._register(kind, deferred=True)
            self._deferred_create = DeferredCreate(token, num_public_connections, match_type)
            self._log.info(
                "Session exists; destroying it before create",
                token=str(token),
                num_public_connections=num_public_connections,
                match_type=match_type,
            )
            self._replayed = None
            if not self._pending.is_outstanding(OperationKind.DESTROY):
                self._destroy_session()
            replayed, self._replayed = self._replayed, None
            if replayed is not None and replayed[0] == token:
                # The destroy settled inside submit_destroy; report how the chain ended
                return replayed[1]
            return Ok(token)

        token = self._register(kind)
        return self._submit_create(token, num_public_connections, match_type)

    def _submit_create(
        self,
        token: RequestToken,
        num_public_connections: int,
        match_type: str,
    ) -> OperationResult:
        config = SessionConfig.for_match(num_public_connections, match_type, self.lan_mode)
        self._last_config = config
        entry = self._pending.get(token)
        if entry is not None:
            entry.context = config

        callback = functools.partial(self._on_create_complete, token)
        accepted = self._submit(
            token,
            lambda: self._backend.submit_create(
                self._config.local_player_id,
                self._config.session_name,
                config,
                callback,
            ),
        )
        if not accepted:
            return self._rejected(token)

        self._arm_timer(token)
        self._log.info(
            "Create submitted",
            token=str(token),
            num_public_connections=num_public_connections,
            match_type=match_type,
            lan=config.is_lan_match,
        )
        return Ok(token)

    def _find_sessions(self, max_results: int) -> OperationResult:
        kind = OperationKind.FIND
        if max_results < 1:
            return self._precondition(kind, RequestError.invalid_argument(
                "max_results", max_results, "must be >= 1",
            ))
        outstanding = self._check_idle(kind)
        if outstanding is not None:
            return outstanding
        if not self._backend_available():
            return self._unavailable(kind)

        query = SearchQuery(max_results=max_results, is_lan_query=self.lan_mode, presence=True)
        token = self._register(kind, context=query)
        callback = functools.partial(self._on_find_complete, token)
        accepted = self._submit(
            token,
            lambda: self._backend.submit_find(self._config.local_player_id, query, callback),
        )
        if not accepted:
            return self._rejected(token)

        self._arm_timer(token)
        self._log.info("Find submitted", token=str(token), max_results=max_results, lan=query.is_lan_query)
        return Ok(token)

    def _join_session(self, result: SearchResult) -> OperationResult:
        kind = OperationKind.JOIN
        if not isinstance(result, SearchResult):
            return self._precondition(kind, RequestError.invalid_argument(
                "result", result, "must be a SearchResult from a find completion",
            ))
        outstanding = self._check_idle(kind)
        if outstanding is not None:
            return outstanding
        if not self._backend_available():
            return self._unavailable(kind)

        token = self._register(kind, context=result)
        callback = functools.partial(self._on_join_complete, token)
        accepted = self._submit(
            token,
            lambda: self._backend.submit_join(
                self._config.local_player_id,
                self._config.session_name,
                result,
                callback,
            ),
        )
        if not accepted:
            return self._rejected(token)

        self._arm_timer(token)
        self._log.info("Join submitted", token=str(token), session_id=result.session_id)
        return Ok(token)

    def _destroy_session(self) -> OperationResult:
        kind = OperationKind.DESTROY
        outstanding = self._check_idle(kind)
        if outstanding is not None:
            return outstanding
        if not self._backend_available():
            return self._unavailable(kind)

        token = self._register(kind)
        callback = functools.partial(self._on_destroy_complete, token)
        accepted = self._submit(
            token,
            lambda: self._backend.submit_destroy(self._config.session_name, callback),
        )
        if not accepted:
            return self._rejected(token)

        self._arm_timer(token)
        self._log.info("Destroy submitted", token=str(token))
        return Ok(token)

    def _start_session(self) -> OperationResult:
        kind = OperationKind.START
        outstanding = self._check_idle(kind)
        if outstanding is not None:
            return outstanding
        if not self._backend_available():
            return self._unavailable(kind)

        token = self._register(kind)
        callback = functools.partial(self._on_start_complete, token)
        accepted = self._submit(
            token,
            lambda: self._backend.submit_start(self._config.session_name, callback),
        )
        if not accepted:
            return self._rejected(token)

        self._arm_timer(token)
        self._log.info("Start submitted", token=str(token))
        return Ok(token)

    # -------------------------------------------------------------------------
    # BACKEND COMPLETIONS
    # -------------------------------------------------------------------------

    def _on_create_complete(self, token: RequestToken, session_name: str, was_successful: bool) -> None:
        def _complete() -> None:
            if self._settle(token, was_successful) is None:
                return
            self._log.info("Create completed", success=was_successful)
            self._queue(OperationKind.CREATE, bool(was_successful))

        self._run_completion(token, _complete)

    def _on_find_complete(
        self,
        token: RequestToken,
        was_successful: bool,
        results: Sequence[SearchResult],
    ) -> None:
        def _complete() -> None:
            entry = self._settle(token, was_successful)
            if entry is None:
                return
            query: SearchQuery = entry.context
            found = list(results or ())[:query.max_results]
            if not found:
                error = SearchError.empty_result_set(query.max_results)
                self._log.info("Find completed without results", error=error.to_dict())
                self._queue(OperationKind.FIND, [], False)
                return
            self._log.info(
                "Find completed",
                success=was_successful,
                result_count=len(found),
            )
            self._queue(OperationKind.FIND, found, bool(was_successful))

        self._run_completion(token, _complete)

    def _on_join_complete(self, token: RequestToken, session_name: str, result: JoinResult) -> None:
        def _complete() -> None:
            code = result if isinstance(result, JoinResult) else JoinResult.UNKNOWN_ERROR
            if self._settle(token, code.is_success) is None:
                return
            self._log.info("Join completed", result=code.value)
            self._queue(OperationKind.JOIN, code)

        self._run_completion(token, _complete)

    def _on_destroy_complete(self, token: RequestToken, session_name: str, was_successful: bool) -> None:
        def _complete() -> None:
            if self._settle(token, was_successful) is None:
                return
            self._log.info("Destroy completed", success=was_successful)
            self._complete_destroy(bool(was_successful))

        self._run_completion(token, _complete)

    def _on_start_complete(self, token: RequestToken, session_name: str, was_successful: bool) -> None:
        def _complete() -> None:
            if self._settle(token, was_successful) is None:
                return
            self._log.info("Start completed", success=was_successful)
            self._queue(OperationKind.START, bool(was_successful))

        self._run_completion(token, _complete)

    def _on_timeout(self, token: RequestToken) -> None:
        def _expire() -> None:
            entry = self._pending.get(token)
            if entry is None:
                return
            entry.timer = None
            timeout_ms = self._config.timeout_ms(token.kind)
            error = RequestError.timeout(token.kind, timeout_ms)
            self._log.warning("Request timed out", error=error.to_dict())
            self._release(token)
            self._count(token.kind, "timeout")
            self._fail(token.kind)

        self._run_completion(token, _expire)

    def _complete_destroy(self, was_successful: bool) -> None:
        """Queue DestroyComplete, then replay or fail a deferred create."""
        self._queue(OperationKind.DESTROY, was_successful)

        deferred, self._deferred_create = self._deferred_create, None
        if deferred is None:
            return

        if was_successful and self._pending.activate(deferred.token):
            self._log.info("Replaying deferred create", token=str(deferred.token))
            result = self._submit_create(deferred.token, deferred.num_public_connections, deferred.match_type)
            self._replayed = (deferred.token, result)
            return

        self._log.warning("Dropping deferred create after failed destroy", token=str(deferred.token))
        if self._release(deferred.token) is not None:
            self._count(OperationKind.CREATE, "failure")
            self._queue(OperationKind.CREATE, False)
        self._replayed = (
            deferred.token,
            Err(BackendError.submission_rejected("destroy", self._config.session_name)),
        )

    # -------------------------------------------------------------------------
    # SLOT AND EVENT PLUMBING
    # -------------------------------------------------------------------------

    def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a state transition under the lock, then deliver queued events."""
        with self._lock:
            result = fn(*args)
        self._flush()
        return result

    def _run_completion(self, token: RequestToken, fn: Callable[[], None]) -> None:
        """Run a completion transition with the request on every log line, listeners included."""
        with self._log.context(operation=token.kind.label, token=str(token)):
            self._run(fn)

    def _backend_available(self) -> bool:
        return self._backend is not None and self._backend.is_available

    def _register(
        self,
        kind: OperationKind,
        deferred: bool = False,
        context: Any = None,
    ) -> RequestToken:
        claim = self._pending.defer(kind, context) if deferred else self._pending.register(kind, context)
        token = claim.unwrap()  # Callers check the slot is idle first
        self._requests_outstanding.inc(operation=kind.label)
        return token

    def _release(self, token: RequestToken) -> Optional[PendingRequest]:
        entry = self._pending.release(token)
        if entry is not None:
            self._requests_outstanding.dec(operation=token.kind.label)
            self._request_latency.observe(token.issued_at.elapsed_seconds(), operation=token.kind.label)
        return entry

    def _settle(self, token: RequestToken, was_successful: bool) -> Optional[PendingRequest]:
        """Release the slot for a backend completion, or drop it as stale."""
        entry = self._release(token)
        if entry is None:
            self._log.warning("Dropping stale completion", token=str(token))
            self._count(token.kind, "stale")
            return None
        self._count(token.kind, "success" if was_successful else "failure")
        return entry

    def _check_idle(self, kind: OperationKind) -> Optional[OperationResult]:
        if not self._pending.is_outstanding(kind):
            return None
        token = self._pending.token_for(kind)
        return self._precondition(kind, RequestError.outstanding(kind, str(token)))

    def _precondition(self, kind: OperationKind, error: RequestError) -> OperationResult:
        self._log.warning("Request refused", operation=kind.label, error=error.to_dict())
        self._count(kind, "refused")
        return Err(error)

    def _unavailable(self, kind: OperationKind) -> OperationResult:
        error = BackendError.unavailable(kind.label)
        self._log.warning("Backend unavailable", operation=kind.label)
        self._count(kind, "unavailable")
        self._fail(kind)
        return Err(error)

    def _submit(self, token: RequestToken, call: Callable[[], bool]) -> bool:
        try:
            return bool(call())
        except Exception:
            self._log.exception("Backend raised during submission", token=str(token))
            return False

    def _rejected(self, token: RequestToken) -> OperationResult:
        error = BackendError.submission_rejected(token.kind.label, self._config.session_name)
        self._log.warning("Backend rejected request", token=str(token))
        self._release(token)
        self._count(token.kind, "rejected")
        self._fail(token.kind)
        return Err(error)

    def _fail(self, kind: OperationKind) -> None:
        """Queue the failure completion of a kind."""
        if kind is OperationKind.DESTROY:
            self._complete_destroy(False)
        elif kind is OperationKind.FIND:
            self._queue(kind, [], False)
        elif kind is OperationKind.JOIN:
            self._queue(kind, JoinResult.UNKNOWN_ERROR)
        else:
            self._queue(kind, False)

    def _arm_timer(self, token: RequestToken) -> None:
        timeout_ms = self._config.timeout_ms(token.kind)
        if timeout_ms <= 0 or self._pending.get(token) is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._log.debug("No running event loop; request has no bounded wait", token=str(token))
            return
        handle = loop.call_later(timeout_ms / C.SECOND_MS, self._on_timeout, token)
        self._pending.attach_timer(token, handle)

    def _count(self, kind: OperationKind, outcome: str) -> None:
        self._requests_total.inc(operation=kind.label, outcome=outcome)

    def _queue(self, kind: OperationKind, *args: Any) -> None:
        self._outbox.append((self._events.delegate_for(kind), args))

    def _flush(self) -> None:
        """Deliver queued events in order; re-entrant calls leave it to the outer loop."""
        with self._lock:
            if self._flushing:
                return
            self._flushing = True
        try:
            while True:
                with self._lock:
                    if not self._outbox:
                        self._flushing = False
                        return
                    delegate, args = self._outbox.popleft()
                delegate.broadcast(*args)
        except BaseException:
            with self._lock:
                self._flushing = False
            raise
