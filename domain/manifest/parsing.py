"""Translate the server's JSON manifest payload into :class:`ManifestEntry` objects."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from .models import (
    KNOWN_PLATFORMS,
    ConfSpec,
    ManifestEntry,
    ManifestError,
    ReleaseDescriptor,
)


_LOGGER = logging.getLogger(__name__)

__all__ = ["parse_manifest", "parse_manifest_entry", "parse_manifest_text"]


def parse_manifest_text(text: str) -> list[ManifestEntry]:
    """Decode ``text`` as JSON and parse it as a manifest."""

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ManifestError(f"Manifest is not valid JSON: {exc}") from exc
    return parse_manifest(payload)


def parse_manifest(payload: Any) -> list[ManifestEntry]:
    """Return the usable entries of ``payload``.

    The payload must be a JSON array.  Entries without an alias are skipped
    with a warning rather than failing the whole manifest.  Entries with an
    alias but no usable version or release are kept so the alias is still
    treated as wanted; installing them fails for that application alone.
    """

    if not isinstance(payload, list):
        raise ManifestError(
            f"Manifest payload must be a list, got {type(payload).__name__}"
        )

    entries: list[ManifestEntry] = []
    for index, raw in enumerate(payload):
        entry = parse_manifest_entry(raw)
        if entry is None:
            _LOGGER.warning("Skipping unusable manifest entry #%s: %r", index, raw)
            continue
        entries.append(entry)
    return entries


def parse_manifest_entry(raw: Any) -> ManifestEntry | None:
    if not isinstance(raw, Mapping):
        return None

    alias = _clean_text(raw.get("alias"))
    if alias is None:
        return None
    version = _clean_text(raw.get("version"))
    release = _parse_release(raw.get("github") or raw.get("release"))
    if version is None or release is None:
        _LOGGER.warning(
            "Manifest entry %s has no usable version or release; it cannot be installed",
            alias,
        )

    return ManifestEntry(
        alias=alias,
        version=version or "",
        release=release,
        platforms=_parse_platforms(raw),
        conf=_parse_conf(raw.get("conf")),
        app=_clean_text(raw.get("app")) or alias,
        entry_point=_clean_entry_point(raw.get("entryPoint") or raw.get("entry_point")),
    )


def _parse_release(section: Any) -> ReleaseDescriptor | None:
    if not isinstance(section, Mapping):
        return None
    url = _clean_text(section.get("zipUrl") or section.get("url"))
    name = _clean_text(section.get("name"))
    if url is None or name is None:
        return None
    return ReleaseDescriptor(url=url, name=name)


def _parse_conf(section: Any) -> ConfSpec | None:
    if not isinstance(section, Mapping):
        return None
    file_name = _clean_text(section.get("file"))
    if file_name is None:
        return None
    return ConfSpec(
        file=file_name,
        api_key_token=_raw_text(section, "apiKeyPattern", "api_key_token"),
        client_id_token=_raw_text(section, "clientIdPattern", "client_id_token"),
    )


def _parse_platforms(raw: Mapping[str, Any]) -> frozenset[str]:
    return frozenset(name for name in KNOWN_PLATFORMS if raw.get(name) is True)


def _raw_text(section: Mapping[str, Any], *keys: str) -> str:
    # Tokens are matched literally, so surrounding whitespace is kept.
    for key in keys:
        value = section.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _clean_text(raw: object) -> str | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        raw = str(raw)
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip()
    return cleaned or None


def _clean_entry_point(raw: object) -> str | None:
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip().strip("/\\")
    if not cleaned:
        return None
    return cleaned.replace("\\", "/")

