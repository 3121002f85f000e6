from __future__ import annotations

"""Agent version helpers."""

from functools import lru_cache
import os
from importlib import metadata

_FALLBACK_VERSION = "0.0.0-dev"
_DISTRIBUTION_NAME = "fleet-agent"


def _version_from_env() -> str | None:
    env_version = os.environ.get("FLEET_AGENT_VERSION")
    if not env_version:
        return None
    return _normalize(env_version)


def _version_from_metadata() -> str | None:
    try:
        return metadata.version(_DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return None


def _normalize(raw_version: str) -> str:
    version = raw_version.strip()
    if version.startswith("v"):
        version = version[1:]
    return version


@lru_cache(maxsize=1)
def get_agent_version() -> str:
    """Return the agent version.

    The order of precedence is:
    1. The ``FLEET_AGENT_VERSION`` environment variable.
    2. The installed ``fleet-agent`` distribution metadata.
    3. A fallback development version string.
    """

    for resolver in (_version_from_env, _version_from_metadata):
        version = resolver()
        if version:
            return version
    return _FALLBACK_VERSION


__all__ = ["get_agent_version"]
