"""Unpack release archives without letting them escape or flood ``dist``."""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path

from services.upgrade import constants
from services.upgrade.models import ArchiveError


_LOGGER = logging.getLogger(__name__)

__all__ = ["extract_archive", "extract_zip_safely"]


def extract_archive(archive_path: Path, target_dir: Path) -> None:
    """Unpack the release archive at ``archive_path`` into ``target_dir``."""

    _LOGGER.info("Extracting release archive %s to %s", archive_path, target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive_path) as archive:
            extract_zip_safely(archive, target_dir)
    except (OSError, zipfile.BadZipFile) as exc:
        raise ArchiveError(f"Failed to extract release archive {archive_path}: {exc}") from exc


def extract_zip_safely(archive: zipfile.ZipFile, target_dir: Path) -> None:
    """Extract every member of ``archive`` below ``target_dir``.

    Members are validated one at a time, so an archive rejected part way
    through may leave the members before the offending one on disk.
    """

    root = target_dir.resolve()
    members = [member for member in archive.infolist() if member.filename]
    if len(members) > constants.MAX_ARCHIVE_ENTRIES:
        _LOGGER.error(
            "Archive has %s entries, limit is %s",
            len(members),
            constants.MAX_ARCHIVE_ENTRIES,
        )
        raise ArchiveError("Release archive contained too many entries")

    total_bytes = 0
    for member in members:
        destination = _member_destination(root, member.filename)
        if member.is_dir():
            destination.mkdir(parents=True, exist_ok=True)
            continue
        _check_member_size(member)
        total_bytes += member.file_size
        if total_bytes > constants.MAX_ARCHIVE_TOTAL_BYTES:
            _LOGGER.error(
                "Archive expands to more than %s bytes", constants.MAX_ARCHIVE_TOTAL_BYTES
            )
            raise ArchiveError("Release archive expanded beyond safe limits")

        destination.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(member) as source, destination.open("wb") as target:
            shutil.copyfileobj(source, target)
        _LOGGER.debug("Extracted %s", destination)

    _LOGGER.info("Extracted %s entries totalling %s bytes", len(members), total_bytes)


def _member_destination(root: Path, name: str) -> Path:
    if name.startswith(("/", "\\")) or Path(name).is_absolute():
        raise ArchiveError("Release archive contained an absolute path entry")
    destination = (root / name).resolve()
    if destination != root and root not in destination.parents:
        raise ArchiveError("Release archive contained an unsafe relative path")
    return destination


def _check_member_size(member: zipfile.ZipInfo) -> None:
    if member.file_size > constants.MAX_ARCHIVE_FILE_SIZE:
        _LOGGER.error(
            "Archive member %s is %s bytes, limit is %s",
            member.filename,
            member.file_size,
            constants.MAX_ARCHIVE_FILE_SIZE,
        )
        raise ArchiveError("Release archive contained an oversized file")
    ratio_limit = member.compress_size * constants.MAX_COMPRESSION_RATIO
    if member.compress_size > 0 and member.file_size > ratio_limit:
        _LOGGER.error(
            "Archive member %s inflates to %s bytes from %s",
            member.filename,
            member.file_size,
            member.compress_size,
        )
        raise ArchiveError("Release archive exceeded safe compression ratio")
