"""
Version constants and compatibility checking for neobridge.

- BRIDGE_VERSION: This client's version, reported via nvim_set_client_info
- REQUIRED_VERSION: Minimum backend version accepted by the handshake
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Tuple

from neobridge.types import ApiVersion

# neobridge version (user-facing)
BRIDGE_VERSION = "0.4.0"

# Minimum backend version; older backends lack the ui_attach options we send
REQUIRED_VERSION = "0.10.0"

CLIENT_NAME = "neobridge"


def parse_version(version: str) -> Tuple[int, int, int]:
    """
    Parse a semver version string into (major, minor, patch) tuple.

    Args:
        version: Version string like "0.10.0" or "v0.10.0-dev"

    Returns:
        Tuple of (major, minor, patch)

    Raises:
        ValueError: If version string is invalid
    """
    # Strip leading 'v' if present
    version = version.lstrip("v")

    match = re.match(r"^(\d+)\.(\d+)\.(\d+)", version)
    if not match:
        raise ValueError(f"Invalid version string: {version}")

    return (int(match.group(1)), int(match.group(2)), int(match.group(3)))


def required_version() -> ApiVersion:
    return ApiVersion(*parse_version(REQUIRED_VERSION))


def is_backend_compatible(version: ApiVersion) -> bool:
    """
    Check if a backend version satisfies REQUIRED_VERSION.

    Args:
        version: Backend version

    Returns:
        True if compatible, False otherwise
    """
    return version >= required_version()


def version_from_metadata(metadata: Mapping[str, Any]) -> ApiVersion:
    """
    Extract the version from ``nvim_get_api_info`` metadata.

    Raises:
        ValueError: If the version entry is missing or malformed
    """
    version = metadata.get("version")
    if not isinstance(version, Mapping):
        raise ValueError("API metadata has no version")
    try:
        return ApiVersion(
            major=int(version["major"]),
            minor=int(version["minor"]),
            patch=int(version["patch"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Malformed API version: {version!r}") from e
