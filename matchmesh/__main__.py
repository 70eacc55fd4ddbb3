#!/usr/bin/env python3
"""
Multiplayer Session Orchestration

Demo: one host and one client orchestrator sharing a backend. The host
creates a session, the client finds and joins it, the host starts it and
then re-hosts, which destroys the old session before creating a new one.

Usage:
    python -m matchmesh

    # Against Redis instead of the in-process LAN registry
    MATCHMESH_BACKEND=redis MATCHMESH_REDIS_URL=redis://localhost:6379/0 python -m matchmesh
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import replace

from matchmesh.backends import LanNetwork, RedisSessionBackend, build_backend
from matchmesh.core.config import MatchMeshConfig
from matchmesh.core.types import OperationKind
from matchmesh.observability.logging import LogLevel, setup_logging
from matchmesh.observability.metrics import MetricsCollector
from matchmesh.session import (
    LoggingTravelHandler,
    SessionBackend,
    SessionLobby,
    SessionOrchestrator,
)

WAIT_S = 5.0


async def _build(config: MatchMeshConfig, player_id: str, network: LanNetwork) -> SessionBackend:
    result = build_backend(config.backend, player_id, network)
    if result.is_err():
        print(f"Backend error: {result.error}")
        sys.exit(1)
    backend = result.unwrap()
    if isinstance(backend, RedisSessionBackend):
        connected = await backend.connect()
        if connected.is_err():
            print(f"Backend error: {connected.error}")
            sys.exit(1)
    return backend


async def demo_session_flow() -> None:
    """Host, find, join, start and re-host against one backend kind."""
    print("\n" + "=" * 60)
    print("Session Orchestration - Demo")
    print("=" * 60 + "\n")

    config_result = MatchMeshConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)

    config = config_result.unwrap()

    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}")
        sys.exit(1)

    print("✓ Configuration loaded and validated")
    print(f"  Backend: {config.backend.kind}")
    print(f"  Session: {config.orchestrator.session_name}")
    print(f"  Match type: {config.lobby.match_type}")

    setup_logging(LogLevel.parse(config.observability.log_level), json_output=config.observability.log_json)
    metrics = MetricsCollector.get_instance()

    network = LanNetwork()
    host_config = replace(config.orchestrator, local_player_id="host-1")
    client_config = replace(config.orchestrator, local_player_id="client-1")

    host_backend = await _build(config, host_config.local_player_id, network)
    client_backend = await _build(config, client_config.local_player_id, network)

    host = SessionOrchestrator(host_backend, host_config, metrics=metrics)
    client = SessionOrchestrator(client_backend, client_config, metrics=metrics)

    host_travel = LoggingTravelHandler()
    client_travel = LoggingTravelHandler()
    host_lobby = SessionLobby(host, config.lobby, host_travel)
    client_lobby = SessionLobby(client, config.lobby, client_travel)
    host_lobby.setup()
    client_lobby.setup()

    print(f"\n✓ Orchestrators ready (LAN mode: {host.lan_mode})")

    # 1. Host
    created = host.events.wait_for(OperationKind.CREATE, WAIT_S)
    host_lobby.host()
    event = await created
    print(f"\n1. Create: success={event.success}")
    print(f"   Host travelled to: {host_travel.server_urls}")

    # 2. Find + join (the lobby joins the first matching result)
    joined = client.events.wait_for(OperationKind.JOIN, WAIT_S)
    client_lobby.join()
    event = await joined
    print(f"\n2. Join: result={event.payload[0].value}")
    print(f"   Client travelled to: {client_travel.client_addresses}")

    # 3. Start
    started = host.events.wait_for(OperationKind.START, WAIT_S)
    host.start_session()
    event = await started
    print(f"\n3. Start: success={event.success}")

    # 4. Re-host: destroy then create
    destroyed = host.events.wait_for(OperationKind.DESTROY, WAIT_S)
    recreated = host.events.wait_for(OperationKind.CREATE, WAIT_S)
    token = host.create_session(config.lobby.num_public_connections, config.lobby.match_type)
    print(f"\n4. Re-host requested: {token}")
    print(f"   Destroy: success={(await destroyed).success}")
    print(f"   Create:  success={(await recreated).success}")

    host_lobby.teardown()
    client_lobby.teardown()
    for backend in (host_backend, client_backend):
        if isinstance(backend, RedisSessionBackend):
            await backend.close()

    if config.observability.metrics_enabled:
        print("\n5. Metrics:")
        print(metrics.export_prometheus())

    print("✓ Demo complete")
    print("=" * 60 + "\n")


async def main() -> None:
    """Main entry point."""
    try:
        await demo_session_flow()
    except KeyboardInterrupt:
        print("\nInterrupted")
    except Exception as e:
        print(f"Error: {e}")
        raise


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
