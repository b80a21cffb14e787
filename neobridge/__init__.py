"""
neobridge: session lifecycle for GUI clients of a Neovim backend.

This package provides:
- Embedded (``nvim --embed``) and server (TCP or Unix socket) connections
- Version check, client setup and UI attach over msgpack-RPC
- Supervision with liveness pings and exponential-backoff reconnects
- UI events for the reconnect indicator and session exit

Quickstart:
    from neobridge import BridgeRuntime, EventChannel, RunningTracker, load_settings

    settings = load_settings()
    events = EventChannel()
    running = RunningTracker()

    runtime = BridgeRuntime()
    runtime.launch(my_handler, None, running, settings, events)

    while not running.quit_requested():
        event = events.recv(timeout=0.1)
        ...
"""

from neobridge.types import (
    ApiVersion,
    CapabilityInfo,
    EmbeddedInstance,
    GridSize,
    LaunchCommand,
    NeovimExited,
    ReconnectStart,
    ReconnectStop,
    RedrawRequested,
    ServerInstance,
)
from neobridge.errors import (
    AttachError,
    BridgeError,
    ConfigError,
    ConnectError,
    IncompatibleVersionError,
    LaunchError,
    RpcError,
    SettingsSyncError,
    SetupError,
    SpawnError,
    TransportClosedError,
)
from neobridge.config import (
    BridgeSettings,
    OptionStore,
    create_nvim_command,
    load_settings,
)
from neobridge.events import EventChannel, ReconnectIndicator
from neobridge.running import RunningTracker
from neobridge.runtime import BridgeRuntime
from neobridge._core.rpc import RpcClient, RpcHandler
from neobridge._core.version import BRIDGE_VERSION, REQUIRED_VERSION

__version__ = BRIDGE_VERSION

__all__ = [
    # Version
    "__version__",
    "BRIDGE_VERSION",
    "REQUIRED_VERSION",
    # Types
    "ApiVersion",
    "CapabilityInfo",
    "EmbeddedInstance",
    "GridSize",
    "LaunchCommand",
    "NeovimExited",
    "ReconnectStart",
    "ReconnectStop",
    "RedrawRequested",
    "ServerInstance",
    # Errors
    "AttachError",
    "BridgeError",
    "ConfigError",
    "ConnectError",
    "IncompatibleVersionError",
    "LaunchError",
    "RpcError",
    "SettingsSyncError",
    "SetupError",
    "SpawnError",
    "TransportClosedError",
    # Config
    "BridgeSettings",
    "OptionStore",
    "create_nvim_command",
    "load_settings",
    # Events
    "EventChannel",
    "ReconnectIndicator",
    "RunningTracker",
    # Runtime
    "BridgeRuntime",
    "RpcClient",
    "RpcHandler",
]
