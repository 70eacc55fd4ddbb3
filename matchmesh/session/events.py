"""
Completion Events: Multicast Delegates for Orchestrator Results

The orchestrator reports every outcome through exactly one of five
delegates. Callers either bind listeners (event-emitter style) or await
the next event of a kind (message-passing style via wait_for()).

Listener signatures:
    on_create_complete(was_successful: bool)
    on_find_complete(results: list[SearchResult], was_successful: bool)
    on_join_complete(result: JoinResult)
    on_destroy_complete(was_successful: bool)
    on_start_complete(was_successful: bool)
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from matchmesh.core.types import OperationKind
from matchmesh.observability.logging import StructuredLogger
from matchmesh.session.settings import JoinResult

logger = StructuredLogger("matchmesh.session.events")


class MulticastDelegate:
    """
    Ordered list of listeners invoked with the same arguments.

    A listener that raises is logged with its traceback; the remaining
    listeners still run and nothing propagates to the broadcaster.
    """

    __slots__ = ("_name", "_listeners", "_handles", "_lock")

    def __init__(self, name: str) -> None:
        self._name = name
        self._listeners: dict[int, Callable[..., Any]] = {}
        self._handles = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, listener: Callable[..., Any]) -> int:
        """Bind listener; returns a handle for remove()."""
        with self._lock:
            handle = next(self._handles)
            self._listeners[handle] = listener
            return handle

    def remove(self, handle: int) -> bool:
        with self._lock:
            return self._listeners.pop(handle, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def broadcast(self, *args: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception(
                    "Completion listener raised",
                    delegate=self._name,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                )

    @property
    def name(self) -> str:
        return self._name

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)


@dataclass(frozen=True)
class CompletionEvent:
    """One delivered completion, as seen by wait_for()."""
    kind: OperationKind
    payload: tuple[Any, ...]

    @property
    def success(self) -> bool:
        if self.kind is OperationKind.JOIN:
            return self.payload[0] is JoinResult.SUCCESS
        if self.kind is OperationKind.FIND:
            return bool(self.payload[1])
        return bool(self.payload[0])


class SessionEvents:
    """The five completion delegates of a session orchestrator."""

    __slots__ = (
        "on_create_complete",
        "on_find_complete",
        "on_join_complete",
        "on_destroy_complete",
        "on_start_complete",
    )

    def __init__(self) -> None:
        self.on_create_complete = MulticastDelegate("create_complete")
        self.on_find_complete = MulticastDelegate("find_complete")
        self.on_join_complete = MulticastDelegate("join_complete")
        self.on_destroy_complete = MulticastDelegate("destroy_complete")
        self.on_start_complete = MulticastDelegate("start_complete")

    def delegate_for(self, kind: OperationKind) -> MulticastDelegate:
        return {
            OperationKind.CREATE: self.on_create_complete,
            OperationKind.FIND: self.on_find_complete,
            OperationKind.JOIN: self.on_join_complete,
            OperationKind.DESTROY: self.on_destroy_complete,
            OperationKind.START: self.on_start_complete,
        }[kind]

    def wait_for(
        self,
        kind: OperationKind,
        timeout: Optional[float] = None,
    ) -> Awaitable[CompletionEvent]:
        """
        Await the next completion of a kind.

        The listener is bound immediately, so an event emitted after this
        call returns (even before the awaitable is awaited) is captured.
        Must be called with a running event loop.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[CompletionEvent] = loop.create_future()
        delegate = self.delegate_for(kind)

        def _resolve(event: CompletionEvent) -> None:
            if not future.done():
                future.set_result(event)

        def _listener(*args: Any) -> None:
            delegate.remove(handle)
            loop.call_soon_threadsafe(_resolve, CompletionEvent(kind=kind, payload=args))

        handle = delegate.add(_listener)
        future.add_done_callback(lambda _: delegate.remove(handle))
        return asyncio.wait_for(future, timeout)

    def clear(self) -> None:
        for kind in OperationKind:
            self.delegate_for(kind).clear()
