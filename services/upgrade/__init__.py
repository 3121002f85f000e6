"""Public API for the upgrade service package."""

from __future__ import annotations

from services.upgrade.builder import PeriodicChecker, build_reconciler
from services.upgrade.conf_patcher import patch_config, placeholder_present
from services.upgrade.constants import (
    CONF_FOLDER,
    MAX_ARCHIVE_ENTRIES,
    MAX_ARCHIVE_FILE_SIZE,
    MAX_ARCHIVE_TOTAL_BYTES,
    MAX_COMPRESSION_RATIO,
)
from services.upgrade.engine import UpgradeEngine
from services.upgrade.models import (
    ArchiveError,
    CycleReport,
    IdentifierReport,
    InstalledRelease,
    SupervisorError,
    UpgradeError,
    VersionStoreError,
)
from services.upgrade.paths import AppFolder, app_directory, contained_path, to_file_path
from services.upgrade.providers import (
    AssetDownloader,
    HttpManifestSource,
    LocalFileManifestSource,
    ManifestSource,
    UrlAssetDownloader,
)
from services.upgrade.reconciler import Reconciler, conf_is_bad, should_upgrade
from services.upgrade.supervisor import ProcessSupervisor, SubprocessSupervisor
from services.upgrade.version_store import (
    InMemoryVersionStore,
    JsonFileVersionStore,
    VersionRecord,
    VersionStore,
)

__all__ = [
    "AppFolder",
    "ArchiveError",
    "AssetDownloader",
    "CONF_FOLDER",
    "CycleReport",
    "HttpManifestSource",
    "IdentifierReport",
    "InMemoryVersionStore",
    "InstalledRelease",
    "JsonFileVersionStore",
    "LocalFileManifestSource",
    "MAX_ARCHIVE_ENTRIES",
    "MAX_ARCHIVE_FILE_SIZE",
    "MAX_ARCHIVE_TOTAL_BYTES",
    "MAX_COMPRESSION_RATIO",
    "ManifestSource",
    "PeriodicChecker",
    "ProcessSupervisor",
    "Reconciler",
    "SubprocessSupervisor",
    "SupervisorError",
    "UpgradeEngine",
    "UpgradeError",
    "UrlAssetDownloader",
    "VersionRecord",
    "VersionStore",
    "VersionStoreError",
    "app_directory",
    "contained_path",
    "build_reconciler",
    "conf_is_bad",
    "patch_config",
    "placeholder_present",
    "should_upgrade",
    "to_file_path",
]
