"""
Backends module: Concrete session capabilities.

- LanSessionBackend: in-process LAN registry (identity "NULL")
- RedisSessionBackend: Redis advertisement registry (identity "REDIS")
"""

from __future__ import annotations

from typing import Optional

from matchmesh.core.config import BackendConfig
from matchmesh.core.errors import MatchMeshError, RequestError
from matchmesh.core.types import Result, Ok, Err
from matchmesh.backends.lan_backend import LanNetwork, LanSessionBackend
from matchmesh.backends.redis_backend import RedisSessionBackend
from matchmesh.session.backend import SessionBackend


def build_backend(
    config: BackendConfig,
    player_id: str,
    network: Optional[LanNetwork] = None,
) -> Result[SessionBackend, MatchMeshError]:
    """
    Build the backend named by config.kind.

    A Redis backend still needs `await backend.connect()` before use.
    """
    if config.kind == "lan":
        return Ok(LanSessionBackend(network or LanNetwork(), player_id, config.lan))
    if config.kind == "redis":
        return Ok(RedisSessionBackend(config.redis, player_id, config.lan.host_address))
    return Err(RequestError.invalid_argument("backend.kind", config.kind, "must be 'lan' or 'redis'"))


__all__ = [
    "LanNetwork",
    "LanSessionBackend",
    "RedisSessionBackend",
    "build_backend",
]
