"""
Pending Request Table: One Slot per Operation Kind

Replaces delegate-handle bookkeeping with explicit request tokens:

    register(kind) -> token        slot IDLE -> AWAITING
    defer(CREATE)  -> token        slot IDLE -> DEFERRED (waiting on destroy)
    activate(token)                slot DEFERRED -> AWAITING
    release(token) -> entry        slot -> IDLE, only if token matches

A completion whose token no longer matches its slot (late delivery after
a timeout, duplicate delivery) is refused by release() and must be
dropped by the caller.

Thread Safety:
    Not synchronized. The orchestrator serializes access under its lock.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Iterator, Optional, Protocol

from matchmesh.core.types import Result, Ok, Err, OperationKind, RequestToken
from matchmesh.core.errors import RequestError


class SlotState(Enum):
    """State of one operation-kind slot."""
    IDLE = auto()
    DEFERRED = auto()   # Create waiting for an in-flight destroy
    AWAITING = auto()   # Accepted by backend, awaiting completion callback


class Cancellable(Protocol):
    """Anything with cancel(), e.g. asyncio.TimerHandle."""

    def cancel(self) -> None: ...


@dataclass
class PendingRequest:
    """A registered request occupying its kind's slot."""
    token: RequestToken
    state: SlotState
    timer: Optional[Cancellable] = None
    context: Any = None

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


@dataclass
class PendingRequestTable:
    """
    Single-slot-per-kind registration table.

    Invariant: a token is live from register()/defer() until release();
    a new request of a kind cannot be registered while its slot is busy.
    """

    _slots: dict[OperationKind, PendingRequest] = field(default_factory=dict)
    _serials: Iterator[int] = field(default_factory=lambda: itertools.count(1))

    def _issue(self, kind: OperationKind) -> RequestToken:
        return RequestToken(kind=kind, serial=next(self._serials))

    def _claim(
        self,
        kind: OperationKind,
        state: SlotState,
        context: Any,
    ) -> Result[RequestToken, RequestError]:
        current = self._slots.get(kind)
        if current is not None:
            return Err(RequestError.outstanding(kind, str(current.token)))
        token = self._issue(kind)
        self._slots[kind] = PendingRequest(token=token, state=state, context=context)
        return Ok(token)

    def register(
        self,
        kind: OperationKind,
        context: Any = None,
    ) -> Result[RequestToken, RequestError]:
        """Claim the slot for a request about to be submitted."""
        return self._claim(kind, SlotState.AWAITING, context)

    def defer(
        self,
        kind: OperationKind,
        context: Any = None,
    ) -> Result[RequestToken, RequestError]:
        """Claim the slot for a request that waits on another operation."""
        return self._claim(kind, SlotState.DEFERRED, context)

    def activate(self, token: RequestToken, context: Any = None) -> bool:
        """Move a deferred request to AWAITING, keeping its token."""
        entry = self.get(token)
        if entry is None or entry.state is not SlotState.DEFERRED:
            return False
        entry.state = SlotState.AWAITING
        if context is not None:
            entry.context = context
        return True

    def release(self, token: RequestToken) -> Optional[PendingRequest]:
        """
        Clear the slot held by token.

        Returns:
            The released entry, or None if the token is stale.
        """
        entry = self.get(token)
        if entry is None:
            return None
        entry.cancel_timer()
        del self._slots[token.kind]
        return entry

    def attach_timer(self, token: RequestToken, timer: Cancellable) -> bool:
        entry = self.get(token)
        if entry is None:
            timer.cancel()
            return False
        entry.cancel_timer()
        entry.timer = timer
        return True

    def get(self, token: RequestToken) -> Optional[PendingRequest]:
        """Entry for token, only if the token is the live one for its kind."""
        entry = self._slots.get(token.kind)
        if entry is None or entry.token != token:
            return None
        return entry

    def state(self, kind: OperationKind) -> SlotState:
        entry = self._slots.get(kind)
        return entry.state if entry is not None else SlotState.IDLE

    def token_for(self, kind: OperationKind) -> Optional[RequestToken]:
        entry = self._slots.get(kind)
        return entry.token if entry is not None else None

    def is_outstanding(self, kind: OperationKind) -> bool:
        return kind in self._slots

    def outstanding(self) -> list[RequestToken]:
        return [entry.token for entry in self._slots.values()]

    def __len__(self) -> int:
        return len(self._slots)
