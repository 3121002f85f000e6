"""Drive each identifier's installed applications towards the manifest."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from domain.manifest import ManifestEntry
from services.upgrade.conf_patcher import placeholder_present, read_conf
from services.upgrade.engine import UpgradeEngine
from services.upgrade.models import CycleReport, IdentifierReport
from services.upgrade.paths import identifier_dist
from services.upgrade.providers import ManifestSource
from services.upgrade.supervisor import ProcessSupervisor
from services.upgrade.version_store import VersionRecord, VersionStore
from services.upgrade.versioning import describe_version_change


_LOGGER = logging.getLogger(__name__)

__all__ = ["Reconciler", "conf_is_bad", "should_upgrade"]


def should_upgrade(current_version: str | None, new_version: str) -> bool:
    """Return ``True`` unless ``current_version`` is exactly ``new_version``."""

    return not current_version or current_version != new_version


def conf_is_bad(dist: Path, entry: ManifestEntry, version: str | None) -> bool:
    """Return ``True`` when the installed config still carries a placeholder.

    A leftover token means a previous substitution never completed, so the
    application is reinstalled even though its version matches.
    """

    if entry.conf is None:
        return False
    conf = read_conf(dist, entry, version)
    if conf is None:
        return False
    return placeholder_present(entry.conf.api_key_token, conf) or placeholder_present(
        entry.conf.client_id_token, conf
    )


class Reconciler:
    """Coordinate manifest retrieval, upgrades and process supervision.

    Cycles must not overlap: nothing here locks the version records or the
    install directories.  Identifiers and their entries are processed strictly
    in order so that stop, replace and start for an alias never interleave.
    """

    def __init__(
        self,
        manifest_source: ManifestSource,
        store: VersionStore,
        supervisor: ProcessSupervisor,
        engine: UpgradeEngine,
        *,
        dist_root: Path,
        identifiers: Sequence[str],
        platform: str,
    ) -> None:
        self._manifest_source = manifest_source
        self._store = store
        self._supervisor = supervisor
        self._engine = engine
        self._dist_root = Path(dist_root)
        self._identifiers = [str(identifier) for identifier in identifiers]
        self._platform = platform

    def check(self) -> CycleReport:
        """Run one reconciliation cycle."""

        report = CycleReport()
        manifest = self._manifest_source.fetch()
        if not manifest:
            _LOGGER.warning("Failed to obtain app manifests from %s", self._manifest_source)
            return report
        report.manifest_available = True

        entries = [entry for entry in manifest if entry.supports(self._platform)]
        _LOGGER.debug(
            "Manifest lists %s application(s), %s for %s",
            len(manifest),
            len(entries),
            self._platform,
        )

        versions = self._store.get_versions()
        for identifier in self._identifiers:
            record = versions.get(identifier)
            if record is None:
                record = self._store.record_for(identifier)
            dist = identifier_dist(self._dist_root, identifier)
            report.identifiers.append(self.check_manifest(identifier, entries, dist, record))
        return report

    def check_manifest(
        self,
        identifier: str,
        entries: Iterable[ManifestEntry],
        dist: Path,
        versions: VersionRecord,
    ) -> IdentifierReport:
        """Reconcile one identifier's install directory against ``entries``."""

        report = IdentifierReport(identifier)
        extra_apps = set(versions)

        for entry in entries:
            extra_apps.discard(entry.alias)
            try:
                if self.check_and_upgrade(identifier, entry, versions, dist):
                    report.upgraded.append(entry.alias)
            except Exception:
                _LOGGER.warning(
                    "Failed to reconcile %s for identifier %s",
                    entry.alias,
                    identifier,
                    exc_info=True,
                )
                report.failed.append(entry.alias)

        for alias in sorted(extra_apps):
            _LOGGER.info("%s is no longer wanted for identifier %s", alias, identifier)
            try:
                self._supervisor.stop_app(dist, alias)
            except Exception:
                _LOGGER.warning(
                    "Failed to stop %s for identifier %s", alias, identifier, exc_info=True
                )
                continue
            report.stopped.append(alias)

        return report

    def check_and_upgrade(
        self,
        identifier: str,
        entry: ManifestEntry,
        versions: VersionRecord,
        dist: Path,
    ) -> bool:
        """Upgrade ``entry`` if needed, then make sure it is running.

        Returns ``True`` when a new release was installed.
        """

        current_version = versions.get(entry.alias)
        upgraded = False
        if should_upgrade(current_version, entry.version) or conf_is_bad(
            dist, entry, current_version
        ):
            _LOGGER.info(
                "Preparing %s of %s for identifier %s: %s -> %s",
                describe_version_change(current_version, entry.version),
                entry.alias,
                identifier,
                current_version or "<none>",
                entry.version,
            )
            upgraded = (
                self._engine.upgrade(identifier, entry, current_version, versions, dist)
                is not None
            )
        else:
            _LOGGER.info(
                "Already have the latest version of %s (%s)", entry.alias, current_version
            )

        # Always start: first run, fresh upgrade, or a process killed externally.
        self._supervisor.start_app(dist, entry, versions.get(entry.alias))
        return upgraded
