"""
System-Wide Constants for Session Orchestration

All magic names, numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000

# =============================================================================
# SESSION IDENTITY
# =============================================================================
DEFAULT_SESSION_NAME: Final[str] = "GameSession"
NULL_SUBSYSTEM_NAME: Final[str] = "NULL"     # Offline/LAN-only backend identity
REDIS_SUBSYSTEM_NAME: Final[str] = "REDIS"
MATCH_TYPE_KEY: Final[str] = "MatchType"
BUILD_UNIQUE_ID: Final[int] = 1

# =============================================================================
# LOBBY DEFAULTS
# =============================================================================
DEFAULT_NUM_PUBLIC_CONNECTIONS: Final[int] = 4
DEFAULT_MATCH_TYPE: Final[str] = "FreeForAll"
DEFAULT_LOBBY_PATH: Final[str] = "/Game/ThirdPerson/Maps/Lobby"
DEFAULT_MAX_SEARCH_RESULTS: Final[int] = 10_000
LISTEN_OPTION: Final[str] = "?listen"

# =============================================================================
# REQUEST TIMEOUTS (0 disables the bounded wait)
# =============================================================================
DEFAULT_REQUEST_TIMEOUT_MS: Final[int] = 30 * SECOND_MS
DEFAULT_FIND_TIMEOUT_MS: Final[int] = 60 * SECOND_MS

# =============================================================================
# LAN BACKEND
# =============================================================================
DEFAULT_HOST_ADDRESS: Final[str] = "127.0.0.1:7777"
LAN_PING_MS: Final[int] = 1

# =============================================================================
# REDIS BACKEND
# =============================================================================
DEFAULT_REDIS_URL: Final[str] = "redis://localhost:6379/0"
DEFAULT_REDIS_KEY_PREFIX: Final[str] = "matchmesh"
DEFAULT_ADVERTISEMENT_TTL_S: Final[int] = 120
DEFAULT_ADVERTISEMENT_KEEPALIVE_S: Final[int] = 40   # Refresh well inside the TTL
REDIS_SOCKET_TIMEOUT_MS: Final[int] = 5 * SECOND_MS
MAX_SCAN_COUNT: Final[int] = 1000
