"""
Exception types for neobridge.

Provides typed exceptions for:
- Launch failures (spawn, connect, handshake, attach)
- msgpack-RPC call failures
- Configuration errors
"""

from __future__ import annotations

from typing import Any, Optional


class BridgeError(Exception):
    """Base exception for all neobridge errors."""
    pass


class ConfigError(BridgeError):
    """Raised when settings cannot be loaded or are invalid."""
    pass


# =============================================================================
# Launch Errors
# =============================================================================


class LaunchError(BridgeError):
    """
    Raised when a single launch attempt fails.

    Launch errors are fatal to the attempt, never to the process. In embedded
    mode they surface to the caller of ``BridgeRuntime.launch``; in server
    mode they feed the reconnect backoff loop.
    """
    pass


class SpawnError(LaunchError):
    """Raised when the embedded backend process cannot be started."""
    pass


class ConnectError(LaunchError):
    """Raised when the remote backend address cannot be reached."""
    pass


class IncompatibleVersionError(LaunchError):
    """
    Raised when the backend never reported an acceptable version.

    Attributes:
        required: Minimum required version string
        found: Last version string seen, if any attempt got that far
    """

    def __init__(self, required: str, found: Optional[str] = None):
        self.required = required
        self.found = found

        message = f"neobridge requires nvim version {required} or higher"
        if found:
            message += f" (found {found})"

        super().__init__(message)


class SetupError(LaunchError):
    """Raised when client-specific backend state cannot be installed."""
    pass


class SettingsSyncError(LaunchError):
    """Raised when initial settings cannot be synced to the backend."""
    pass


class AttachError(LaunchError):
    """Raised when the UI attach call fails."""
    pass


# =============================================================================
# RPC Errors
# =============================================================================


class RpcError(BridgeError):
    """
    Raised when the backend answers a request with an error.

    Attributes:
        method: The RPC method that failed
        error: The raw error payload sent by the backend
    """

    def __init__(self, method: str, error: Any):
        self.method = method
        self.error = error
        super().__init__(f"{method}: {_describe_error(error)}")

    def __repr__(self) -> str:
        return f"RpcError(method={self.method!r}, error={self.error!r})"


class TransportClosedError(RpcError):
    """Raised for calls issued on, or pending when, the transport closed."""

    def __init__(self, method: str = "", error: Any = "transport closed"):
        super().__init__(method, error)


def _describe_error(error: Any) -> str:
    # Neovim sends errors as [type, message]
    if isinstance(error, (list, tuple)) and len(error) == 2:
        return str(error[1])
    return str(error)
