"""
Type definitions for neobridge.

Defines the dataclasses used across the package for:
- Backend instances (embedded process or remote server)
- Capability information returned by the handshake
- Grid sizes and UI attach options
- Events surfaced to the UI layer
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Union


# =============================================================================
# Backend Instances
# =============================================================================


@dataclass(frozen=True)
class LaunchCommand:
    """
    A ready-to-spawn command for the embedded backend.

    Attributes:
        argv: Program and arguments
        cwd: Working directory (None inherits the current one)
        env: Full environment (None inherits the current one)
    """
    argv: List[str]
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class EmbeddedInstance:
    """Backend spawned as a child process, spoken to over stdio."""
    command: LaunchCommand


@dataclass(frozen=True)
class ServerInstance:
    """Backend listening on ``host:port`` or a Unix socket path."""
    address: str


Instance = Union[EmbeddedInstance, ServerInstance]


# =============================================================================
# Handshake Types
# =============================================================================


@dataclass(frozen=True, order=True)
class ApiVersion:
    """
    Backend semantic version.

    Ordering compares (major, minor, patch) lexicographically.
    """
    major: int
    minor: int
    patch: int

    def has_version(self, major: int, minor: int, patch: int) -> bool:
        """Return True if this version is at least ``major.minor.patch``."""
        return (self.major, self.minor, self.patch) >= (major, minor, patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class CapabilityInfo:
    """
    Result of a successful capability request.

    Attributes:
        channel: Channel id the backend assigned to this client
        version: Backend version
    """
    channel: int
    version: ApiVersion


# =============================================================================
# UI Attach
# =============================================================================


@dataclass(frozen=True)
class GridSize:
    """Grid dimensions in character cells."""
    width: int
    height: int

    def clamped(self, minimum: "GridSize", maximum: "GridSize") -> "GridSize":
        return GridSize(
            width=min(max(self.width, minimum.width), maximum.width),
            height=min(max(self.height, minimum.height), maximum.height),
        )


MIN_GRID_SIZE = GridSize(20, 6)
MAX_GRID_SIZE = GridSize(10000, 1000)
DEFAULT_GRID_SIZE = GridSize(100, 50)


def clamped_grid_size(grid_size: Optional[GridSize]) -> GridSize:
    """Return ``grid_size`` clamped to the supported range, or the default."""
    if grid_size is None:
        return DEFAULT_GRID_SIZE
    return grid_size.clamped(MIN_GRID_SIZE, MAX_GRID_SIZE)


@dataclass
class UiAttachOptions:
    """Options passed to ``nvim_ui_attach``."""
    linegrid_external: bool = True
    multigrid_external: bool = True
    rgb: bool = True

    def to_dict(self) -> Dict[str, bool]:
        return {
            "ext_linegrid": self.linegrid_external,
            "ext_multigrid": self.multigrid_external,
            "rgb": self.rgb,
        }


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class ReconnectStart:
    """
    A server connection attempt failed and a retry is scheduled.

    Attributes:
        address: Server address being dialed
        wait: Seconds until the next attempt
    """
    address: str
    wait: int


@dataclass(frozen=True)
class ReconnectStop:
    """A server connection was (re)established."""


@dataclass(frozen=True)
class NeovimExited:
    """The session ended; no further traffic will arrive."""


@dataclass(frozen=True)
class RedrawRequested:
    """The UI should redraw, e.g. to refresh the reconnect indicator."""


Event = Union[ReconnectStart, ReconnectStop, NeovimExited, RedrawRequested]

