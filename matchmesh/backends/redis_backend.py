"""
Redis Session Backend
=====================

Online backend (identity "REDIS") that advertises hosted sessions as
Redis hashes so that orchestrators on different machines can discover
and join them.

Memory Model:
-------------
Each advertised session is a hash at ``{prefix}:session:{session_id}``:

- 'owner':            hosting player id
- 'address':          connect address of the host
- 'attributes':       JSON attribute bag (MatchType, ...)
- 'open' / 'max':     open and total public connections
- 'lan', 'presence', 'advertise', 'join_in_progress': "1" / "0"
- 'state':            "pending" | "in_progress"

Advertisements expire after ``advertisement_ttl_s``. While a session is
hosted a keep-alive task refreshes the TTL every ``keepalive_interval_s``,
so only advertisements of crashed hosts age out.

Atomicity:
----------
Slot reservation and release run as Lua scripts, so concurrent joins
never oversubscribe a session and a release never resurrects a deleted key.

Delivery:
---------
Each submission spawns a task on the running loop; its completion
callback runs from that task, after submit_* has returned. Redis errors
are logged and reported as failed completions.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Coroutine, Optional, TYPE_CHECKING
from uuid import uuid4

from matchmesh.core import constants as C
from matchmesh.core.config import RedisBackendConfig
from matchmesh.core.errors import BackendError
from matchmesh.core.types import Result, Ok, Err
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

# Lazy import for optional redis dependency
if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = StructuredLogger("matchmesh.backends.redis")


# =============================================================================
# LUA SCRIPTS
# =============================================================================

# Reserve one public slot: -1 missing, -2 no address, 0 full, 1 reserved
LUA_RESERVE_SLOT_SCRIPT: str = """
local key = KEYS[1]
if redis.call('EXISTS', key) == 0 then
    return -1
end
local address = redis.call('HGET', key, 'address')
if not address or address == '' then
    return -2
end
local open = tonumber(redis.call('HGET', key, 'open') or '0')
if open <= 0 then
    return 0
end
redis.call('HINCRBY', key, 'open', -1)
return 1
"""

# Return a slot only while the advertisement still exists
LUA_RELEASE_SLOT_SCRIPT: str = """
local key = KEYS[1]
if redis.call('EXISTS', key) == 0 then
    return 0
end
local open = tonumber(redis.call('HGET', key, 'open') or '0')
local max = tonumber(redis.call('HGET', key, 'max') or '0')
if open < max then
    redis.call('HINCRBY', key, 'open', 1)
end
return 1
"""

_RESERVE_OUTCOMES: dict[int, JoinResult] = {
    -1: JoinResult.SESSION_DOES_NOT_EXIST,
    -2: JoinResult.COULD_NOT_RETRIEVE_ADDRESS,
    0: JoinResult.SESSION_IS_FULL,
    1: JoinResult.SUCCESS,
}

STATE_PENDING: str = "pending"
STATE_IN_PROGRESS: str = "in_progress"


def _flag(value: bool) -> str:
    return "1" if value else "0"


def _is_set(data: dict[str, Any], key: str) -> bool:
    return str(data.get(key, "0")) == "1"


def encode_advertisement(
    owner_id: str,
    address: str,
    config: SessionConfig,
) -> dict[str, str]:
    """Hash fields for a freshly created session."""
    return {
        "owner": owner_id,
        "address": address,
        "attributes": json.dumps(config.attributes()),
        "open": str(config.num_public_connections),
        "max": str(config.num_public_connections),
        "lan": _flag(config.is_lan_match),
        "presence": _flag(config.uses_presence),
        "advertise": _flag(config.should_advertise),
        "join_in_progress": _flag(config.allow_join_in_progress),
        "state": STATE_PENDING,
    }


def decode_advertisement(session_id: str, data: dict[str, Any]) -> Optional[SearchResult]:
    """SearchResult for a stored hash; None if the hash is malformed."""
    try:
        attributes = json.loads(data.get("attributes") or "{}")
        return SearchResult(
            session_id=session_id,
            owner_id=str(data.get("owner", "")),
            attributes=attributes,
            open_public_connections=int(data.get("open", 0)),
            max_public_connections=int(data.get("max", 0)),
        )
    except (TypeError, ValueError) as e:
        logger.warning("Skipping malformed advertisement", session_id=session_id, error=str(e))
        return None


def matches_query(data: dict[str, Any], query: SearchQuery, exclude_owner: str) -> bool:
    if str(data.get("owner", "")) == exclude_owner:
        return False
    if not _is_set(data, "advertise"):
        return False
    if _is_set(data, "lan") != query.is_lan_query:
        return False
    if query.presence and not _is_set(data, "presence"):
        return False
    if data.get("state") == STATE_IN_PROGRESS and not _is_set(data, "join_in_progress"):
        return False
    return True


# =============================================================================
# REDIS SESSION BACKEND
# =============================================================================

class RedisSessionBackend:
    """
    SessionBackend over a Redis advertisement registry.

    Example:
        >>> backend = RedisSessionBackend(RedisBackendConfig(), "host-1", "10.0.0.2:7777")
        >>> result = await backend.connect()
        >>> orchestrator = SessionOrchestrator(backend)
        >>> await backend.close()
    """

    __slots__ = (
        "_config",
        "_log",
        "_address",
        "_client",
        "_connected",
        "_named",
        "_tasks",
        "_keepalives",
        "_reserve_sha",
        "_release_sha",
    )

    def __init__(
        self,
        config: RedisBackendConfig,
        player_id: str,
        address: str,
        client: Optional["aioredis.Redis"] = None,
    ) -> None:
        """
        Args:
            config: Redis connection and key layout.
            player_id: Local player attached to every log line of this backend.
            address: Connect address advertised for hosted sessions.
            client: Pre-built client; built from config.url when omitted.

        Note:
            Call `connect()` before submitting requests.
        """
        self._config = config
        self._log = logger.with_extra(player_id=player_id)
        self._address = address
        self._client = client
        self._connected = False
        self._named: dict[str, NamedSession] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._keepalives: dict[str, asyncio.Task[None]] = {}
        self._reserve_sha: Optional[str] = None
        self._release_sha: Optional[str] = None

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, BackendError]:
        """
        Connect and load the slot scripts.

        Returns:
            Ok(None) on success, Err(BackendError) on failure.
        """
        if self._client is None:
            try:
                import redis.asyncio as aioredis
            except ImportError as e:
                return Err(BackendError.connection_failed(self._config.url, e))
            self._client = aioredis.Redis.from_url(
                self._config.url,
                decode_responses=True,
                socket_timeout=self._config.socket_timeout_ms / C.SECOND_MS,
            )

        try:
            await self._client.ping()
            self._reserve_sha = await self._client.script_load(LUA_RESERVE_SLOT_SCRIPT)
            self._release_sha = await self._client.script_load(LUA_RELEASE_SLOT_SCRIPT)
        except Exception as e:
            self._log.error("Redis connection failed", url=self._config.url, error=str(e))
            return Err(BackendError.connection_failed(self._config.url, e))

        self._connected = True
        self._log.info("Connected to Redis", url=self._config.url)
        return Ok(None)

    async def close(self) -> None:
        """Cancel in-flight requests and close the client. Safe to call twice."""
        for task in [*self._tasks, *self._keepalives.values()]:
            task.cancel()
        self._tasks.clear()
        self._keepalives.clear()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._connected = False

    async def drain(self) -> None:
        """Wait for all in-flight requests to deliver their completions."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # IDENTITY
    # -------------------------------------------------------------------------

    @property
    def subsystem_name(self) -> str:
        return C.REDIS_SUBSYSTEM_NAME

    @property
    def is_available(self) -> bool:
        return self._connected and self._client is not None

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
            return False
        return self._spawn(self._create(local_player_id, session_name, config, on_complete))

    def submit_find(
        self,
        local_player_id: str,
        query: SearchQuery,
        on_complete: FindCompleteCallback,
    ) -> bool:
        return self._spawn(self._find(local_player_id, query, on_complete))

    def submit_join(
        self,
        local_player_id: str,
        session_name: str,
        result: SearchResult,
        on_complete: JoinCompleteCallback,
    ) -> bool:
        return self._spawn(self._join(local_player_id, session_name, result, on_complete))

    def submit_destroy(
        self,
        session_name: str,
        on_complete: DestroyCompleteCallback,
    ) -> bool:
        if session_name not in self._named:
            return False
        return self._spawn(self._destroy(session_name, on_complete))

    def submit_start(
        self,
        session_name: str,
        on_complete: StartCompleteCallback,
    ) -> bool:
        if session_name not in self._named:
            return False
        return self._spawn(self._start(session_name, on_complete))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> bool:
        if not self.is_available:
            coro.close()
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            self._log.warning("No running event loop; cannot submit to Redis")
            return False
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    # -------------------------------------------------------------------------
    # OPERATIONS
    # -------------------------------------------------------------------------

    async def _create(
        self,
        local_player_id: str,
        session_name: str,
        config: SessionConfig,
        on_complete: CreateCompleteCallback,
    ) -> None:
        session_id = uuid4().hex
        key = self._config.session_key(session_id)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=encode_advertisement(local_player_id, self._address, config))
                pipe.expire(key, self._config.advertisement_ttl_s)
                await pipe.execute()
        except Exception as e:
            self._log_failure("create", e, session_name=session_name)
            on_complete(session_name, False)
            return

        self._named[session_name] = NamedSession(
            session_name=session_name,
            session_id=session_id,
            is_host=True,
            settings=config,
            connect_address=self._address,
            registered_players=[local_player_id],
        )
        self._start_keepalive(session_name, key)
        self._log.info("Session advertised", session_name=session_name, key=key)
        on_complete(session_name, True)

    async def _find(
        self,
        local_player_id: str,
        query: SearchQuery,
        on_complete: FindCompleteCallback,
    ) -> None:
        results: list[SearchResult] = []
        prefix_len = len(self._config.session_key(""))
        try:
            cursor = 0
            while len(results) < query.max_results:
                cursor, keys = await self._client.scan(
                    cursor=cursor,
                    match=self._config.session_pattern,
                    count=C.MAX_SCAN_COUNT,
                )
                if keys:
                    async with self._client.pipeline(transaction=False) as pipe:
                        for key in keys:
                            pipe.hgetall(key)
                        values = await pipe.execute()

                    for key, data in zip(keys, values):
                        if not data or not matches_query(data, query, local_player_id):
                            continue
                        result = decode_advertisement(key[prefix_len:], data)
                        if result is not None:
                            results.append(result)
                        if len(results) >= query.max_results:
                            break

                if cursor == 0:
                    break
        except Exception as e:
            self._log_failure("find", e)
            on_complete(False, [])
            return

        self._log.debug("Search finished", result_count=len(results))
        on_complete(True, results)

    async def _join(
        self,
        local_player_id: str,
        session_name: str,
        result: SearchResult,
        on_complete: JoinCompleteCallback,
    ) -> None:
        if session_name in self._named:
            on_complete(session_name, JoinResult.ALREADY_IN_SESSION)
            return

        key = self._config.session_key(result.session_id)
        try:
            code = int(await self._client.evalsha(self._reserve_sha, 1, key))
            outcome = _RESERVE_OUTCOMES.get(code, JoinResult.UNKNOWN_ERROR)
            address = await self._client.hget(key, "address") if outcome.is_success else None
        except Exception as e:
            self._log_failure("join", e, session_name=session_name)
            on_complete(session_name, JoinResult.UNKNOWN_ERROR)
            return

        if outcome.is_success:
            self._named[session_name] = NamedSession(
                session_name=session_name,
                session_id=result.session_id,
                is_host=False,
                connect_address=address,
                registered_players=[local_player_id],
            )
        self._log.info("Join finished", session_name=session_name, result=outcome.value)
        on_complete(session_name, outcome)

    async def _destroy(self, session_name: str, on_complete: DestroyCompleteCallback) -> None:
        session = self._named.get(session_name)
        if session is None:
            on_complete(session_name, False)
            return

        key = self._config.session_key(session.session_id)
        try:
            if session.is_host:
                await self._client.delete(key)
            else:
                await self._client.evalsha(self._release_sha, 1, key)
        except Exception as e:
            self._log_failure("destroy", e, session_name=session_name)
            on_complete(session_name, False)
            return

        self._stop_keepalive(session_name)
        self._named.pop(session_name, None)
        self._log.info("Session destroyed", session_name=session_name, key=key)
        on_complete(session_name, True)

    async def _start(self, session_name: str, on_complete: StartCompleteCallback) -> None:
        session = self._named.get(session_name)
        if session is None:
            on_complete(session_name, False)
            return

        if session.is_host:
            key = self._config.session_key(session.session_id)
            try:
                await self._client.hset(key, "state", STATE_IN_PROGRESS)
            except Exception as e:
                self._log_failure("start", e, session_name=session_name)
                on_complete(session_name, False)
                return

        session.state = NamedSessionState.IN_PROGRESS
        on_complete(session_name, True)

    # -------------------------------------------------------------------------
    # ADVERTISEMENT KEEP-ALIVE
    # -------------------------------------------------------------------------

    def _start_keepalive(self, session_name: str, key: str) -> None:
        self._stop_keepalive(session_name)
        task = asyncio.get_running_loop().create_task(self._keep_alive(session_name, key))
        self._keepalives[session_name] = task

    def _stop_keepalive(self, session_name: str) -> None:
        task = self._keepalives.pop(session_name, None)
        if task is not None:
            task.cancel()

    async def _keep_alive(self, session_name: str, key: str) -> None:
        """Refresh the advertisement TTL until cancelled or the key is gone."""
        while True:
            await asyncio.sleep(self._config.keepalive_interval_s)
            try:
                refreshed = await self._client.expire(key, self._config.advertisement_ttl_s)
            except Exception as e:
                # Transient; the next tick retries while the TTL still holds
                self._log_failure("keepalive", e, session_name=session_name)
                continue
            if not refreshed:
                self._log.warning("Advertisement vanished; stopping keep-alive", session_name=session_name, key=key)
                return

    def _log_failure(self, operation: str, cause: Exception, **kwargs: Any) -> None:
        error = BackendError.operation_failed(operation, cause)
        self._log.error("Redis operation failed", error=error.to_dict(), **kwargs)
