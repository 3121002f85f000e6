"""Agent configuration loaded from a JSON file."""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field
from math import isfinite
from pathlib import Path
from typing import Any, Mapping

from domain.manifest import KNOWN_PLATFORMS, PLATFORM_LINUX, PLATFORM_MACOS, PLATFORM_WINDOWS
from shared.logging_config import LogVerbosity

CONFIG_PATH_ENV = "FLEET_AGENT_CONFIG"
API_KEY_ENV = "FLEET_AGENT_API_KEY"
_DEFAULT_DIRNAME = ".fleet_agent"
_DEFAULT_CONFIG_NAME = "agent.json"
_DEFAULT_STATE_NAME = "versions.json"
DEFAULT_POLL_INTERVAL_SECONDS = 300
DEFAULT_STOP_TIMEOUT_SECONDS = 10.0


class ConfigError(ValueError):
    """Raised when the agent configuration is missing or invalid."""


@dataclass(frozen=True)
class AgentConfig:
    """Structured configuration values for the agent."""

    dist_dir: Path
    identifiers: tuple[str, ...]
    manifest_url: str | None = None
    manifest_file: Path | None = None
    api_key: str = ""
    client_ids: Mapping[str, str] = field(default_factory=dict)
    default_client_id: str | None = None
    platform: str = PLATFORM_LINUX
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    http_timeout_seconds: float | None = None
    stop_timeout_seconds: float = DEFAULT_STOP_TIMEOUT_SECONDS
    state_file: Path | None = None
    log_verbosity: LogVerbosity = LogVerbosity.INFO

    @property
    def state_path(self) -> Path:
        return self.state_file or self.dist_dir / _DEFAULT_STATE_NAME

    def client_id_for(self, identifier: str) -> str:
        """Return the client ID substituted into ``identifier``'s configs."""

        client_id = self.client_ids.get(identifier) or self.default_client_id
        if not client_id:
            raise ConfigError(f"No client ID configured for identifier {identifier}")
        return client_id


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_PATH_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / _DEFAULT_DIRNAME / _DEFAULT_CONFIG_NAME


def detect_platform() -> str:
    if sys.platform.startswith("win"):
        return PLATFORM_WINDOWS
    if sys.platform == "darwin":
        return PLATFORM_MACOS
    return PLATFORM_LINUX


def load_agent_config(path: str | Path | None = None) -> AgentConfig:
    """Load configuration from ``path`` or the default location."""

    location = Path(path).expanduser() if path is not None else default_config_path()
    try:
        raw = location.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Unable to read agent configuration {location}: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Agent configuration {location} is not valid JSON: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Agent configuration {location} must be a JSON object")
    return parse_agent_config(data, base_dir=location.parent)


def parse_agent_config(data: Mapping[str, Any], *, base_dir: Path | None = None) -> AgentConfig:
    """Build an :class:`AgentConfig` from decoded JSON ``data``."""

    manifest_url = _clean_text(data.get("manifest_url"))
    manifest_file = _coerce_path(data.get("manifest_file"), base_dir)
    if manifest_url is None and manifest_file is None:
        raise ConfigError("Either manifest_url or manifest_file must be configured")

    dist_dir = _coerce_path(data.get("dist_dir"), base_dir)
    if dist_dir is None:
        raise ConfigError("dist_dir must be configured")

    identifiers = _parse_identifiers(data.get("identifiers"))

    api_key = os.environ.get(API_KEY_ENV) or _clean_text(data.get("api_key")) or ""

    return AgentConfig(
        dist_dir=dist_dir,
        identifiers=identifiers,
        manifest_url=manifest_url,
        manifest_file=manifest_file,
        api_key=api_key,
        client_ids=_parse_client_ids(data.get("client_ids")),
        default_client_id=_clean_text(data.get("default_client_id")),
        platform=_parse_platform(data.get("platform")),
        poll_interval_seconds=int(
            _coerce_positive_number(
                data.get("poll_interval_seconds"), default=DEFAULT_POLL_INTERVAL_SECONDS
            )
        ),
        http_timeout_seconds=_coerce_positive_number(data.get("http_timeout_seconds"), default=None),
        stop_timeout_seconds=float(
            _coerce_positive_number(
                data.get("stop_timeout_seconds"), default=DEFAULT_STOP_TIMEOUT_SECONDS
            )
        ),
        state_file=_coerce_path(data.get("state_file"), base_dir),
        log_verbosity=_parse_verbosity(data.get("log_verbosity")),
    )


def _parse_identifiers(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list) or not value:
        raise ConfigError("identifiers must be a non-empty list")
    identifiers: list[str] = []
    for raw in value:
        identifier = _clean_text(raw)
        if identifier is None:
            raise ConfigError(f"Invalid identifier: {raw!r}")
        if identifier not in identifiers:
            identifiers.append(identifier)
    return tuple(identifiers)


def _parse_client_ids(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    client_ids: dict[str, str] = {}
    for identifier, client_id in value.items():
        cleaned = _clean_text(client_id)
        if cleaned is not None:
            client_ids[str(identifier)] = cleaned
    return client_ids


def _parse_platform(value: Any) -> str:
    cleaned = _clean_text(value)
    if cleaned is None:
        return detect_platform()
    lowered = cleaned.lower()
    if lowered not in KNOWN_PLATFORMS:
        raise ConfigError(f"Unsupported platform: {cleaned}")
    return lowered


def _parse_verbosity(value: Any) -> LogVerbosity:
    if isinstance(value, str):
        try:
            return LogVerbosity(value.strip().lower())
        except ValueError:
            return LogVerbosity.INFO
    return LogVerbosity.INFO


def _clean_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        value = str(value)
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _coerce_path(value: Any, base_dir: Path | None) -> Path | None:
    cleaned = _clean_text(value)
    if cleaned is None:
        return None
    path = Path(cleaned).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return path


def _coerce_positive_number(value: Any, *, default: float | None) -> float | None:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = float(value)
    elif isinstance(value, str):
        try:
            candidate = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if not isfinite(candidate) or candidate <= 0:
        return default
    return candidate


__all__ = [
    "API_KEY_ENV",
    "AgentConfig",
    "CONFIG_PATH_ENV",
    "ConfigError",
    "default_config_path",
    "detect_platform",
    "load_agent_config",
    "parse_agent_config",
]
