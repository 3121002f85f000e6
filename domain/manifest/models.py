"""Desired-state manifest entries published by the fleet server."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet


PLATFORM_WINDOWS = "windows"
PLATFORM_LINUX = "linux"
PLATFORM_MACOS = "macos"
KNOWN_PLATFORMS: tuple[str, ...] = (PLATFORM_WINDOWS, PLATFORM_LINUX, PLATFORM_MACOS)


class ManifestError(ValueError):
    """Raised when a manifest payload cannot be interpreted."""


@dataclass(frozen=True)
class ConfSpec:
    """Configuration file shipped with an application and its placeholders.

    ``file`` is relative to the application's configuration folder.  The two
    tokens are literal substrings that the agent replaces with the API key and
    the per-identifier client ID after extraction.
    """

    file: str
    api_key_token: str = ""
    client_id_token: str = ""

    @property
    def tokens(self) -> tuple[str, ...]:
        return tuple(token for token in (self.api_key_token, self.client_id_token) if token)


@dataclass(frozen=True)
class ReleaseDescriptor:
    """Where to fetch the release archive and what to call it on disk."""

    url: str
    name: str


@dataclass(frozen=True)
class ManifestEntry:
    """One application the server wants installed.

    An entry whose version or release could not be read is kept (with
    ``version == ""`` or ``release is None``) so its alias still counts as
    wanted; it simply cannot be installed, see :attr:`installable`.
    """

    alias: str
    version: str
    release: ReleaseDescriptor | None
    platforms: FrozenSet[str] = field(default_factory=frozenset)
    conf: ConfSpec | None = None
    app: str = ""
    entry_point: str | None = None

    def __post_init__(self) -> None:
        if not self.app:
            object.__setattr__(self, "app", self.alias)

    @property
    def installable(self) -> bool:
        return bool(self.version) and self.release is not None

    def supports(self, platform: str) -> bool:
        return platform.lower() in self.platforms


__all__ = [
    "ConfSpec",
    "KNOWN_PLATFORMS",
    "ManifestEntry",
    "ManifestError",
    "PLATFORM_LINUX",
    "PLATFORM_MACOS",
    "PLATFORM_WINDOWS",
    "ReleaseDescriptor",
]
