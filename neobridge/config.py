"""
Settings for neobridge.

Settings come from three layers, later ones winning:
- Built-in defaults
- A TOML config file (``config.toml`` in the user config directory)
- Environment variables

Environment Variables:
    NEOBRIDGE_CONFIG: Path to the config file
    NEOBRIDGE_SERVER: Server address (switches to server mode)
    NEOBRIDGE_WSL: Run the embedded backend inside WSL
    NEOBRIDGE_NO_MULTIGRID: Disable external multigrid rendering
    NEOBRIDGE_NVIM_BIN: Backend binary for embedded mode
"""

from __future__ import annotations

import logging
import os
import shlex
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Protocol

from platformdirs import user_config_dir

from neobridge.errors import ConfigError, RpcError, TransportClosedError
from neobridge.types import LaunchCommand

if TYPE_CHECKING:
    from neobridge._core.rpc import RpcClient

logger = logging.getLogger(__name__)

APP_NAME = "neobridge"
CONFIG_FILENAME = "config.toml"

# Backend global variables are namespaced as g:neobridge_<option>
VAR_PREFIX = "neobridge_"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class BridgeSettings:
    """
    Settings consumed by the session lifecycle.

    Attributes:
        server: Remote backend address; None spawns an embedded backend
        wsl: Run the embedded backend through WSL (also enables the
            clipboard bridge)
        no_multi_grid: Disable ``ext_multigrid`` on attach
        nvim_binary: Backend executable for embedded mode
        nvim_args: Extra arguments after ``--embed``
        cwd: Working directory for the embedded backend
        env: Environment for the embedded backend (None inherits)
        options: Named UI options synced with ``g:neobridge_<name>``
    """
    server: Optional[str] = None
    wsl: bool = False
    no_multi_grid: bool = False
    nvim_binary: str = "nvim"
    nvim_args: List[str] = field(default_factory=list)
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration on creation."""
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if not isinstance(self.nvim_binary, str) or not self.nvim_binary:
            raise ConfigError("nvim_binary must be a non-empty string")
        for name in ("server", "cwd"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"{name} must be a string, got {type(value).__name__}")
        if self.server is not None and not self.server.strip():
            raise ConfigError("server address must not be empty")
        for name in ("wsl", "no_multi_grid"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false")
        if not isinstance(self.nvim_args, list) or not all(
            isinstance(arg, str) for arg in self.nvim_args
        ):
            raise ConfigError("nvim_args must be a list of strings")
        if self.env is not None and not (
            isinstance(self.env, dict)
            and all(isinstance(k, str) and isinstance(v, str) for k, v in self.env.items())
        ):
            raise ConfigError("env must be a table of strings")
        if not isinstance(self.options, dict):
            raise ConfigError("options must be a table")

    @property
    def handle_clipboard(self) -> bool:
        """The backend cannot reach the local clipboard on its own."""
        return self.wsl or self.server is not None


def default_config_path() -> Path:
    """Get the default location of the config file."""
    return Path(user_config_dir(APP_NAME)) / CONFIG_FILENAME


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BridgeSettings:
    """
    Load settings from the config file and environment.

    Args:
        path: Config file (default: $NEOBRIDGE_CONFIG or the user config dir)
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated BridgeSettings

    Raises:
        ConfigError: If the file is unreadable or a value is invalid
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    if path is None and environ.get("NEOBRIDGE_CONFIG"):
        path = Path(environ["NEOBRIDGE_CONFIG"])
        if not path.exists():
            raise ConfigError(f"NEOBRIDGE_CONFIG points to a missing file: {path}")
    if path is None:
        candidate = default_config_path()
        path = candidate if candidate.exists() else None

    if path is not None:
        logger.debug(f"Loading settings from {path}")
        data = _read_config_file(path)
        known = {f.name for f in fields(BridgeSettings)}
        for key, value in data.items():
            if key in known:
                values[key] = value
            else:
                logger.warning(f"Ignoring unknown setting {key!r} in {path}")

    if environ.get("NEOBRIDGE_SERVER"):
        values["server"] = environ["NEOBRIDGE_SERVER"]
    if "NEOBRIDGE_WSL" in environ:
        values["wsl"] = environ["NEOBRIDGE_WSL"].strip().lower() in _TRUTHY
    if "NEOBRIDGE_NO_MULTIGRID" in environ:
        values["no_multi_grid"] = (
            environ["NEOBRIDGE_NO_MULTIGRID"].strip().lower() in _TRUTHY
        )
    if environ.get("NEOBRIDGE_NVIM_BIN"):
        values["nvim_binary"] = environ["NEOBRIDGE_NVIM_BIN"]

    try:
        return BridgeSettings(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid settings: {e}") from e


def create_nvim_command(settings: BridgeSettings) -> LaunchCommand:
    """
    Build the command line for the embedded backend.

    Args:
        settings: Bridge settings

    Returns:
        LaunchCommand ready to spawn
    """
    argv = [settings.nvim_binary, "--embed", *settings.nvim_args]
    if settings.wsl:
        argv = ["wsl", "$SHELL", "-lc", shlex.join(argv)]
    return LaunchCommand(argv=argv, cwd=settings.cwd, env=settings.env)


# =============================================================================
# Settings Store
# =============================================================================


class SettingsStore(Protocol):
    """Anything that can push its initial values to a fresh backend."""

    async def read_initial_values(self, rpc: "RpcClient") -> None:
        ...


class OptionStore:
    """
    Default settings store backed by ``BridgeSettings.options``.

    For each option, a value already set in the backend (e.g. by the user's
    init.lua) is adopted; otherwise the local default is pushed.
    """

    def __init__(self, settings: BridgeSettings):
        self.settings = settings

    async def read_initial_values(self, rpc: "RpcClient") -> None:
        for name, default in list(self.settings.options.items()):
            var = VAR_PREFIX + name
            try:
                value = await rpc.request("nvim_get_var", var)
            except TransportClosedError:
                raise
            except RpcError:
                # Key not found: the backend has no value yet
                logger.debug(f"Initial value for {var} not set, pushing default")
                await rpc.request("nvim_set_var", var, default)
            else:
                self.settings.options[name] = value
