"""
Configuration Management for Session Orchestration

Provides validated configuration with sensible defaults.
Supports environment variable overrides (MATCHMESH_ prefix).

Design:
- Immutable after construction
- Fail-fast on invalid configuration via validate()
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from matchmesh.core.types import Result, Ok, Err, OperationKind
from matchmesh.core import constants as C


BACKEND_KINDS: frozenset[str] = frozenset({"lan", "redis"})


@dataclass(frozen=True)
class OrchestratorConfig:
    """Session orchestrator configuration."""

    session_name: str = C.DEFAULT_SESSION_NAME
    local_player_id: str = "player-1"
    request_timeout_ms: int = C.DEFAULT_REQUEST_TIMEOUT_MS
    find_timeout_ms: int = C.DEFAULT_FIND_TIMEOUT_MS

    def timeout_ms(self, kind: OperationKind) -> int:
        """Bounded wait for a request kind; 0 means wait forever."""
        if kind is OperationKind.FIND:
            return self.find_timeout_ms
        return self.request_timeout_ms


@dataclass(frozen=True)
class LobbyConfig:
    """Caller-side defaults for hosting and joining."""

    num_public_connections: int = C.DEFAULT_NUM_PUBLIC_CONNECTIONS
    match_type: str = C.DEFAULT_MATCH_TYPE
    lobby_path: str = C.DEFAULT_LOBBY_PATH
    max_search_results: int = C.DEFAULT_MAX_SEARCH_RESULTS

    @property
    def listen_url(self) -> str:
        """Travel URL used by the host after a successful create."""
        return f"{self.lobby_path}{C.LISTEN_OPTION}"


@dataclass(frozen=True)
class LanConfig:
    """In-process LAN backend configuration."""

    host_address: str = C.DEFAULT_HOST_ADDRESS
    simulated_latency_ms: int = 0


@dataclass(frozen=True)
class RedisBackendConfig:
    """Redis advertisement backend configuration."""

    url: str = C.DEFAULT_REDIS_URL
    key_prefix: str = C.DEFAULT_REDIS_KEY_PREFIX
    advertisement_ttl_s: int = C.DEFAULT_ADVERTISEMENT_TTL_S
    keepalive_interval_s: float = C.DEFAULT_ADVERTISEMENT_KEEPALIVE_S
    socket_timeout_ms: int = C.REDIS_SOCKET_TIMEOUT_MS

    def session_key(self, session_id: str) -> str:
        return f"{self.key_prefix}:session:{session_id}"

    @property
    def session_pattern(self) -> str:
        return f"{self.key_prefix}:session:*"


@dataclass(frozen=True)
class BackendConfig:
    """Which backend capability to build and its settings."""

    kind: str = "lan"
    lan: LanConfig = field(default_factory=LanConfig)
    redis: RedisBackendConfig = field(default_factory=RedisBackendConfig)


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging and metrics configuration."""

    log_level: str = "INFO"
    log_json: bool = True
    metrics_enabled: bool = True


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class MatchMeshConfig:
    """Root configuration."""

    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    lobby: LobbyConfig = field(default_factory=LobbyConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> Result[MatchMeshConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with MATCHMESH_.
        Example: MATCHMESH_SESSION_NAME, MATCHMESH_BACKEND, MATCHMESH_REDIS_URL
        """
        try:
            orchestrator = OrchestratorConfig(
                session_name=os.getenv("MATCHMESH_SESSION_NAME", C.DEFAULT_SESSION_NAME),
                local_player_id=os.getenv("MATCHMESH_PLAYER_ID", "player-1"),
                request_timeout_ms=int(os.getenv(
                    "MATCHMESH_REQUEST_TIMEOUT_MS", str(C.DEFAULT_REQUEST_TIMEOUT_MS),
                )),
                find_timeout_ms=int(os.getenv(
                    "MATCHMESH_FIND_TIMEOUT_MS", str(C.DEFAULT_FIND_TIMEOUT_MS),
                )),
            )

            lobby = LobbyConfig(
                num_public_connections=int(os.getenv(
                    "MATCHMESH_NUM_PUBLIC_CONNECTIONS", str(C.DEFAULT_NUM_PUBLIC_CONNECTIONS),
                )),
                match_type=os.getenv("MATCHMESH_MATCH_TYPE", C.DEFAULT_MATCH_TYPE),
                lobby_path=os.getenv("MATCHMESH_LOBBY_PATH", C.DEFAULT_LOBBY_PATH),
                max_search_results=int(os.getenv(
                    "MATCHMESH_MAX_SEARCH_RESULTS", str(C.DEFAULT_MAX_SEARCH_RESULTS),
                )),
            )

            backend = BackendConfig(
                kind=os.getenv("MATCHMESH_BACKEND", "lan").lower(),
                lan=LanConfig(
                    host_address=os.getenv("MATCHMESH_HOST_ADDRESS", C.DEFAULT_HOST_ADDRESS),
                    simulated_latency_ms=int(os.getenv("MATCHMESH_LAN_LATENCY_MS", "0")),
                ),
                redis=RedisBackendConfig(
                    url=os.getenv("MATCHMESH_REDIS_URL", C.DEFAULT_REDIS_URL),
                    key_prefix=os.getenv("MATCHMESH_REDIS_PREFIX", C.DEFAULT_REDIS_KEY_PREFIX),
                    advertisement_ttl_s=int(os.getenv(
                        "MATCHMESH_ADVERTISEMENT_TTL_S", str(C.DEFAULT_ADVERTISEMENT_TTL_S),
                    )),
                    keepalive_interval_s=float(os.getenv(
                        "MATCHMESH_ADVERTISEMENT_KEEPALIVE_S", str(C.DEFAULT_ADVERTISEMENT_KEEPALIVE_S),
                    )),
                ),
            )

            observability = ObservabilityConfig(
                log_level=os.getenv("MATCHMESH_LOG_LEVEL", "INFO").upper(),
                log_json=_env_bool("MATCHMESH_LOG_JSON", True),
                metrics_enabled=_env_bool("MATCHMESH_METRICS_ENABLED", True),
            )

            return Ok(cls(
                orchestrator=orchestrator,
                lobby=lobby,
                backend=backend,
                observability=observability,
            ))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        if not self.orchestrator.session_name:
            return Err("session_name must be non-empty")
        if not self.orchestrator.local_player_id:
            return Err("local_player_id must be non-empty")
        if self.orchestrator.request_timeout_ms < 0 or self.orchestrator.find_timeout_ms < 0:
            return Err("Request timeouts must be >= 0")
        if self.lobby.num_public_connections < 1:
            return Err("num_public_connections must be >= 1")
        if not self.lobby.match_type:
            return Err("match_type must be non-empty")
        if self.lobby.max_search_results < 1:
            return Err("max_search_results must be >= 1")
        if self.backend.kind not in BACKEND_KINDS:
            return Err(f"Unknown backend kind '{self.backend.kind}'")
        if self.backend.lan.simulated_latency_ms < 0:
            return Err("simulated_latency_ms must be >= 0")
        if self.backend.redis.advertisement_ttl_s < 1:
            return Err("advertisement_ttl_s must be >= 1")
        if not 0 < self.backend.redis.keepalive_interval_s < self.backend.redis.advertisement_ttl_s:
            return Err("keepalive_interval_s must be > 0 and shorter than advertisement_ttl_s")
        return Ok(None)
