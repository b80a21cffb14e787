"""
Capability discovery, version compatibility and liveness pings.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from neobridge.errors import BridgeError, IncompatibleVersionError, RpcError
from neobridge.types import CapabilityInfo
from neobridge._core.rpc import RpcClient
from neobridge._core.version import (
    REQUIRED_VERSION,
    is_backend_compatible,
    version_from_metadata,
)

logger = logging.getLogger(__name__)


async def get_api_information(rpc: RpcClient) -> CapabilityInfo:
    """
    Ask the backend for its channel id and version.

    Raises:
        RpcError: If the call fails
        BridgeError: If the response is malformed
    """
    response = await rpc.request("nvim_get_api_info")
    return parse_api_info(response)


def parse_api_info(response: Any) -> CapabilityInfo:
    """
    Parse the ``[channel, metadata]`` pair returned by ``nvim_get_api_info``.

    Raises:
        BridgeError: If the response is malformed
    """
    if not isinstance(response, (list, tuple)) or len(response) != 2:
        raise BridgeError(f"Unexpected API info response: {response!r}")
    channel, metadata = response
    if not isinstance(channel, int) or not isinstance(metadata, dict):
        raise BridgeError(f"Unexpected API info response: {response!r}")
    try:
        version = version_from_metadata(metadata)
    except ValueError as e:
        raise BridgeError(str(e)) from e
    return CapabilityInfo(channel=channel, version=version)


async def check_backend_version(
    rpc: RpcClient,
    attempts: int = 5,
    interval: float = 0.5,
    request_timeout: float = 10.0,
) -> CapabilityInfo:
    """
    Wait for the backend to report a compatible version.

    A freshly started backend may not answer right away, so the request is
    repeated. The first acceptable answer returns immediately.

    Args:
        rpc: Connected RPC client
        attempts: Maximum number of requests
        interval: Delay between unsuccessful attempts
        request_timeout: Bound on each individual request

    Returns:
        CapabilityInfo from the accepted response

    Raises:
        IncompatibleVersionError: If no attempt produced an acceptable version
    """
    last_seen: Optional[str] = None

    for attempt in range(attempts):
        try:
            info = await asyncio.wait_for(
                get_api_information(rpc), timeout=request_timeout
            )
        except asyncio.TimeoutError:
            logger.debug(f"Version check attempt {attempt} timed out")
        except (RpcError, BridgeError) as e:
            logger.debug(f"Version check attempt {attempt} failed: {e}")
        else:
            if is_backend_compatible(info.version):
                return info
            last_seen = str(info.version)
            logger.debug(f"Version check attempt {attempt}: {info.version}")

        if attempt + 1 < attempts:
            await asyncio.sleep(interval)

    raise IncompatibleVersionError(REQUIRED_VERSION, found=last_seen)


async def ping(rpc: RpcClient, timeout: float = 2.0) -> bool:
    """
    Issue a lightweight request to prove the transport is moving.

    Returns:
        False if the request did not complete within ``timeout``; True
        otherwise, including when it completed with an error

    Raises:
        TransportClosedError: If the transport is already closed
    """
    try:
        await asyncio.wait_for(rpc.request("nvim_get_api_info"), timeout=timeout)
    except asyncio.TimeoutError:
        return False
    except RpcError as e:
        if rpc.is_closed:
            raise
        logger.debug(f"Ping returned an error: {e}")
    return True
