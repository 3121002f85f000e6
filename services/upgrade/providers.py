"""Manifest source and release download implementations."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol
from urllib.error import URLError
from urllib.request import Request, urlopen

from app.version import get_agent_version
from domain.manifest import ManifestEntry, ManifestError, parse_manifest, parse_manifest_text


_LOGGER = logging.getLogger(__name__)


class ManifestSource(Protocol):
    """Protocol describing where the desired application set comes from."""

    def fetch(self) -> list[ManifestEntry] | None:
        """Return the manifest entries or ``None`` when unavailable."""


class AssetDownloader(Protocol):
    """Protocol describing how release archives are fetched."""

    def download(self, url: str) -> bytes | None:
        """Return the asset's bytes or ``None`` when the download failed."""


def _build_request(url: str, accept: str) -> Request:
    return Request(
        url,
        headers={
            "Accept": accept,
            "User-Agent": f"fleet-agent/{get_agent_version()}",
        },
    )


class HttpManifestSource:
    """Fetch the manifest from the fleet server's manifest endpoint."""

    def __init__(self, url: str, *, timeout: float | None = None) -> None:
        self._url = url
        self._timeout = timeout

    @property
    def url(self) -> str:
        return self._url

    def fetch(self) -> list[ManifestEntry] | None:
        _LOGGER.debug("Requesting application manifest from %s", self._url)
        try:
            with urlopen(  # nosec - operator-configured endpoint
                _build_request(self._url, "application/json"),
                timeout=self._timeout,
            ) as response:
                payload = json.load(response)
        except (OSError, URLError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            _LOGGER.debug("Failed to query manifest endpoint %s: %s", self._url, exc)
            return None

        try:
            return parse_manifest(payload)
        except ManifestError as exc:
            _LOGGER.warning("Manifest from %s was rejected: %s", self._url, exc)
            return None

    def __str__(self) -> str:
        return self._url


class LocalFileManifestSource:
    """Serve the manifest from a JSON file, for offline hosts and testing."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def fetch(self) -> list[ManifestEntry] | None:
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            _LOGGER.debug("Failed to read local manifest %s: %s", self._path, exc)
            return None
        try:
            return parse_manifest_text(text)
        except ManifestError as exc:
            _LOGGER.warning("Local manifest %s was rejected: %s", self._path, exc)
            return None

    def __str__(self) -> str:
        return str(self._path)


class UrlAssetDownloader:
    """Download release archives into memory."""

    def __init__(self, *, timeout: float | None = None) -> None:
        self._timeout = timeout

    def download(self, url: str) -> bytes | None:
        _LOGGER.info("Downloading release from %s", url)
        try:
            with urlopen(  # nosec - URL published by the fleet server
                _build_request(url, "application/octet-stream"),
                timeout=self._timeout,
            ) as response:
                content = response.read()
        except (OSError, URLError) as exc:
            _LOGGER.warning("Failed to download release from %s: %s", url, exc)
            return None
        _LOGGER.debug("Downloaded %s bytes from %s", len(content), url)
        return content or None


__all__ = [
    "AssetDownloader",
    "HttpManifestSource",
    "LocalFileManifestSource",
    "ManifestSource",
    "UrlAssetDownloader",
]
