"""Filesystem layout of installed applications.

Alias, version, archive name and config file name all come from the remote
manifest, so every path built from them is checked to stay inside the
directory it is meant to live in.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from domain.manifest import ManifestEntry
from services.upgrade.constants import CONF_FOLDER
from services.upgrade.models import UpgradeError


class AppFolder(str, Enum):
    """Well-known folders inside an extracted application directory."""

    CONF = CONF_FOLDER


def contained_path(root: Path, *parts: str) -> Path:
    """Return ``root`` joined with ``parts``.

    Raises :class:`UpgradeError` when the result would resolve to ``root``
    itself or to anything outside it.
    """

    root = Path(root)
    candidate = root.joinpath(*parts)
    resolved_root = root.resolve()
    resolved = candidate.resolve()
    if resolved == resolved_root:
        raise UpgradeError(f"Refusing to use {root} itself for {'/'.join(parts)!r}")
    try:
        resolved.relative_to(resolved_root)
    except ValueError:
        raise UpgradeError(f"Refusing path outside {root}: {'/'.join(parts)!r}") from None
    return candidate


def app_directory_name(entry: ManifestEntry, version: str) -> str:
    return f"{entry.alias}-{version}"


def app_directory(dist: Path, entry: ManifestEntry, version: str) -> Path:
    """Return the directory the release archive for ``version`` unpacks into."""

    return contained_path(dist, app_directory_name(entry, version))


def to_file_path(
    dist: Path,
    entry: ManifestEntry,
    version: str,
    folder: AppFolder,
    file_name: str,
) -> Path:
    """Return the path of ``file_name`` inside ``folder`` for an installed version."""

    return contained_path(app_directory(dist, entry, version) / folder.value, file_name)


def identifier_dist(dist_root: Path, identifier: str) -> Path:
    return Path(dist_root) / identifier


__all__ = [
    "AppFolder",
    "app_directory",
    "app_directory_name",
    "contained_path",
    "identifier_dist",
    "to_file_path",
]
