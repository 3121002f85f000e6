"""Credential substitution for application configuration files.

Shipped configuration templates carry two placeholder tokens declared by the
manifest.  After extraction the agent swaps them for the real API key and the
identifier's client ID.  Substitution is plain substring replacement: tokens
are not escaped and nothing guards against a token that also occurs in
legitimate configuration content.
"""

from __future__ import annotations

import logging
from pathlib import Path

from domain.manifest import ConfSpec, ManifestEntry
from services.upgrade.paths import AppFolder, to_file_path


_LOGGER = logging.getLogger(__name__)

__all__ = [
    "conf_path",
    "patch_config",
    "placeholder_present",
    "read_conf",
]


def placeholder_present(token: str | None, conf: str) -> bool:
    """Return ``True`` when ``token`` is non-empty and occurs in ``conf``."""

    return bool(token) and token in conf


def patch_config(
    conf: str,
    api_key_token: str,
    api_key: str,
    client_id_token: str,
    client_id: str,
) -> str:
    """Return ``conf`` with both placeholder tokens replaced."""

    patched = conf
    # str.replace("") would splice the value between every character.
    if api_key_token:
        patched = patched.replace(api_key_token, api_key)
    if client_id_token:
        patched = patched.replace(client_id_token, client_id)
    return patched


def conf_path(dist: Path, entry: ManifestEntry, version: str, spec: ConfSpec) -> Path:
    return to_file_path(dist, entry, version, AppFolder.CONF, spec.file)


def read_conf(dist: Path, entry: ManifestEntry, version: str | None) -> str | None:
    """Return the configuration text installed for ``version``.

    ``None`` is returned when the entry has no configuration, nothing is
    installed yet, or the file cannot be read.
    """

    if entry.conf is None or not version:
        return None
    path = conf_path(dist, entry, version, entry.conf)
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        _LOGGER.warning(
            "Failed to read previous conf file for %s:%s (%s)",
            entry.alias,
            version,
            exc,
        )
        return None
