"""
Core connection management for neobridge.

This module handles:
- Spawning the embedded backend or dialing a server
- msgpack-RPC transport
- Version check, setup and UI attach
- Supervision, liveness pings and reconnect backoff
"""

from neobridge._core.version import (
    BRIDGE_VERSION,
    REQUIRED_VERSION,
    is_backend_compatible,
)
from neobridge._core.rpc import RpcClient, RpcHandler
from neobridge._core.lifecycle import (
    Session,
    create_session,
    resolve_instance,
)
from neobridge._core.health import (
    check_backend_version,
    get_api_information,
    ping,
)
from neobridge._core.setup import show_error_message
from neobridge._core.supervisor import (
    ConnectionSupervisor,
    CurrentConnection,
    SupervisorTiming,
    next_backoff,
)

__all__ = [
    # Version
    "BRIDGE_VERSION",
    "REQUIRED_VERSION",
    "is_backend_compatible",
    # RPC
    "RpcClient",
    "RpcHandler",
    # Lifecycle
    "Session",
    "create_session",
    "resolve_instance",
    # Health
    "check_backend_version",
    "get_api_information",
    "ping",
    # Setup
    "show_error_message",
    # Supervisor
    "ConnectionSupervisor",
    "CurrentConnection",
    "SupervisorTiming",
    "next_backoff",
]
