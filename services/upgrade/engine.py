"""Install and upgrade a single application from its release archive."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable

from domain.manifest import ManifestEntry
from services.upgrade.archive import extract_archive
from services.upgrade.conf_patcher import conf_path, patch_config, read_conf
from services.upgrade.models import InstalledRelease, UpgradeError
from services.upgrade.paths import app_directory, contained_path
from services.upgrade.providers import AssetDownloader
from services.upgrade.supervisor import ProcessSupervisor
from services.upgrade.version_store import VersionRecord


_LOGGER = logging.getLogger(__name__)


class UpgradeEngine:
    """Replace an application's files with a downloaded release.

    An upgrade is a two-phase transition.  :meth:`_install` performs every
    side effect (stop, download, purge, extract, configure) and returns an
    :class:`InstalledRelease` only when all of them succeeded; :meth:`upgrade`
    then commits that release to the version record.  Any exception before the
    commit leaves the record at the previous version, so the next cycle sees
    the install as incomplete and retries it.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        downloader: AssetDownloader,
        *,
        api_key: str,
        client_id_for: Callable[[str], str],
    ) -> None:
        self._supervisor = supervisor
        self._downloader = downloader
        self._api_key = api_key
        self._client_id_for = client_id_for

    def upgrade(
        self,
        identifier: str,
        entry: ManifestEntry,
        current_version: str | None,
        versions: VersionRecord,
        dist: Path,
    ) -> InstalledRelease | None:
        """Install ``entry`` into ``dist`` and record it in ``versions``.

        Returns the committed release, or ``None`` when the release could not
        be downloaded (nothing on disk was touched in that case).
        """

        installed = self._install(identifier, entry, current_version, dist)
        if installed is None:
            return None
        versions.commit(installed.alias, installed.version)
        _LOGGER.info(
            "Installed %s %s for identifier %s", entry.app, installed.version, identifier
        )
        return installed

    def _install(
        self,
        identifier: str,
        entry: ManifestEntry,
        current_version: str | None,
        dist: Path,
    ) -> InstalledRelease | None:
        release = entry.release
        if release is None or not entry.version:
            raise UpgradeError(f"Manifest entry for {entry.alias} has no installable release")
        # Reject unsafe names before anything running is touched.
        archive_path = contained_path(dist, release.name)
        app_dir = app_directory(dist, entry, entry.version)
        if entry.conf is not None:
            conf_path(dist, entry, entry.version, entry.conf)

        _LOGGER.info("Stopping %s", entry.app)
        self._stop_quietly(dist, entry.alias)

        contents = self._downloader.download(release.url)
        if not contents:
            _LOGGER.warning(
                "Failed to obtain the release for %s from %s", entry.alias, release.url
            )
            return None

        old_conf = read_conf(dist, entry, current_version)

        dist.mkdir(parents=True, exist_ok=True)
        _LOGGER.info("Writing release to disk: %s", archive_path)
        archive_path.unlink(missing_ok=True)
        archive_path.write_bytes(contents)

        try:
            purge_alias_directories(dist, entry.alias)
            extract_archive(archive_path, dist)
            if entry.conf is not None:
                self._configure(identifier, entry, dist, old_conf)
        finally:
            _remove_archive(archive_path)

        return InstalledRelease(
            alias=entry.alias,
            version=entry.version,
            app_dir=app_dir,
        )

    def _configure(
        self,
        identifier: str,
        entry: ManifestEntry,
        dist: Path,
        old_conf: str | None,
    ) -> None:
        spec = entry.conf
        assert spec is not None
        path = conf_path(dist, entry, entry.version, spec)
        if old_conf:
            _LOGGER.info("Carrying previous configuration forward to %s", path)
            contents = old_conf
        else:
            _LOGGER.info("Configuring %s from shipped defaults", path)
            contents = path.read_text(encoding="utf-8")

        patched = patch_config(
            contents,
            spec.api_key_token,
            self._api_key,
            spec.client_id_token,
            self._client_id_for(identifier),
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(patched, encoding="utf-8")

    def _stop_quietly(self, dist: Path, alias: str) -> None:
        try:
            self._supervisor.stop_app(dist, alias)
        except Exception as exc:
            _LOGGER.warning("Failed to stop %s before upgrading: %s", alias, exc)


def _remove_archive(archive_path: Path) -> None:
    try:
        archive_path.unlink(missing_ok=True)
    except OSError as exc:
        _LOGGER.warning("Failed to delete release archive %s: %s", archive_path, exc)


def purge_alias_directories(dist: Path, alias: str) -> None:
    """Delete every directory in ``dist`` whose name contains ``alias``."""

    for child in sorted(dist.iterdir()):
        if not child.is_dir() or alias not in child.name:
            continue
        _LOGGER.info("Deleting previous installation %s", child)
        try:
            shutil.rmtree(child)
        except OSError as exc:
            _LOGGER.warning("Failed to delete directory %s: %s", child, exc)


__all__ = ["UpgradeEngine", "purge_alias_directories"]
