"""
One-time backend setup performed after the version check.

Handles:
- Announcing this client and its channel id to the backend
- Routing the clipboard through the client when the backend cannot reach it
- Pushing initial settings
- Attaching the UI
"""

from __future__ import annotations

import logging
from typing import List, Optional

from neobridge.config import BridgeSettings, SettingsStore
from neobridge.errors import (
    AttachError,
    BridgeError,
    SettingsSyncError,
    SetupError,
)
from neobridge.types import CapabilityInfo, GridSize, UiAttachOptions, clamped_grid_size
from neobridge._core.rpc import RpcClient
from neobridge._core.version import BRIDGE_VERSION, CLIENT_NAME, parse_version

logger = logging.getLogger(__name__)

# Installed with the channel id as the only argument (...)
CLIPBOARD_PROVIDER_LUA = """
local channel = ...
local function copy(register)
  return function(lines, regtype)
    vim.rpcnotify(channel, "neobridge.set_clipboard", register, lines, regtype)
  end
end
local function paste(register)
  return function()
    return vim.rpcrequest(channel, "neobridge.get_clipboard", register)
  end
end
vim.g.clipboard = {
  name = "neobridge",
  copy = { ["+"] = copy("+"), ["*"] = copy("*") },
  paste = { ["+"] = paste("+"), ["*"] = paste("*") },
  cache_enabled = 0,
}
"""


async def setup_client_state(
    rpc: RpcClient,
    handle_clipboard: bool,
    api_info: CapabilityInfo,
    settings: BridgeSettings,
) -> None:
    """
    Register this client with the backend.

    Safe to repeat on the same backend: every call overwrites the same
    globals.

    Args:
        rpc: Connected RPC client
        handle_clipboard: Install the clipboard provider
        api_info: Result of the version check
        settings: Bridge settings

    Raises:
        SetupError: If any call fails
    """
    major, minor, patch = parse_version(BRIDGE_VERSION)
    try:
        await rpc.request(
            "nvim_set_client_info",
            CLIENT_NAME,
            {"major": major, "minor": minor, "patch": patch},
            "ui",
            {},
            {},
        )
        await rpc.request("nvim_set_var", CLIENT_NAME, True)
        await rpc.request("nvim_set_var", f"{CLIENT_NAME}_channel_id", api_info.channel)
        if handle_clipboard:
            logger.debug(f"Installing clipboard provider on channel {api_info.channel}")
            await rpc.request("nvim_exec_lua", CLIPBOARD_PROVIDER_LUA, [api_info.channel])
    except BridgeError as e:
        raise SetupError(f"Failed to set up backend state: {e}") from e


async def sync_initial_settings(rpc: RpcClient, store: SettingsStore) -> None:
    """
    Push the settings store's initial values to the backend.

    Raises:
        SettingsSyncError: If the store fails
    """
    try:
        await store.read_initial_values(rpc)
    except BridgeError as e:
        raise SettingsSyncError(f"Failed to sync initial settings: {e}") from e


async def attach_ui(
    rpc: RpcClient,
    grid_size: Optional[GridSize],
    settings: BridgeSettings,
) -> None:
    """
    Attach as an external UI. This triggers loading the user config.

    Raises:
        AttachError: If the attach call fails
    """
    options = UiAttachOptions(multigrid_external=not settings.no_multi_grid)
    size = clamped_grid_size(grid_size)
    try:
        await rpc.request("nvim_ui_attach", size.width, size.height, options.to_dict())
    except BridgeError as e:
        raise AttachError(f"Could not attach ui to neovim process: {e}") from e
    logger.info("Neovim process attached")


async def show_error_message(rpc: RpcClient, lines: List[str]) -> None:
    """
    Echo an error in the backend's message area, kept in history.

    Raises:
        RpcError: If the echo fails
    """
    chunks = [["Error: ", "ErrorMsg"]]
    chunks.extend([f"{line}\n", "ErrorMsg"] for line in lines)
    await rpc.request("nvim_echo", chunks, True, {})
