"""Helpers for constructing and scheduling the reconciler."""

from __future__ import annotations

import logging
import threading

from app.config import AgentConfig
from services.upgrade.engine import UpgradeEngine
from services.upgrade.models import CycleReport
from services.upgrade.providers import (
    AssetDownloader,
    HttpManifestSource,
    LocalFileManifestSource,
    ManifestSource,
    UrlAssetDownloader,
)
from services.upgrade.reconciler import Reconciler
from services.upgrade.supervisor import ProcessSupervisor, SubprocessSupervisor
from services.upgrade.version_store import JsonFileVersionStore, VersionStore
from shared.logging_config import register_secret


_LOGGER = logging.getLogger(__name__)


def _build_manifest_source(config: AgentConfig) -> ManifestSource:
    if config.manifest_file is not None:
        _LOGGER.info("Using local manifest at %s", config.manifest_file)
        return LocalFileManifestSource(config.manifest_file)
    assert config.manifest_url is not None
    return HttpManifestSource(config.manifest_url, timeout=config.http_timeout_seconds)


def build_reconciler(
    config: AgentConfig,
    *,
    supervisor: ProcessSupervisor | None = None,
    store: VersionStore | None = None,
    manifest_source: ManifestSource | None = None,
    downloader: AssetDownloader | None = None,
) -> Reconciler:
    """Construct a :class:`Reconciler` wired from ``config``."""

    register_secret(config.api_key)
    for client_id in (*config.client_ids.values(), config.default_client_id):
        register_secret(client_id)

    supervisor = supervisor or SubprocessSupervisor(stop_timeout=config.stop_timeout_seconds)
    store = store or JsonFileVersionStore(config.state_path)
    manifest_source = manifest_source or _build_manifest_source(config)
    downloader = downloader or UrlAssetDownloader(timeout=config.http_timeout_seconds)

    engine = UpgradeEngine(
        supervisor,
        downloader,
        api_key=config.api_key,
        client_id_for=config.client_id_for,
    )
    return Reconciler(
        manifest_source,
        store,
        supervisor,
        engine,
        dist_root=config.dist_dir,
        identifiers=config.identifiers,
        platform=config.platform,
    )


class PeriodicChecker:
    """Run reconciliation cycles on a fixed cadence, never two at once."""

    def __init__(self, reconciler: Reconciler, interval_seconds: float) -> None:
        self._reconciler = reconciler
        self._interval = interval_seconds
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> CycleReport | None:
        """Run a single cycle, or skip it when one is already in progress."""

        if not self._cycle_lock.acquire(blocking=False):
            _LOGGER.warning("Previous reconciliation cycle still running; skipping")
            return None
        try:
            return self._reconciler.check()
        except Exception:
            _LOGGER.exception("Unexpected error during reconciliation cycle")
            return None
        finally:
            self._cycle_lock.release()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="fleet-agent-reconcile",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until :meth:`stop` is called; return ``True`` once stopped."""

        return self._stop_event.wait(timeout)

    def _run(self) -> None:
        _LOGGER.info("Checking for application updates every %ss", self._interval)
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(self._interval):
                break


__all__ = ["PeriodicChecker", "build_reconciler"]
