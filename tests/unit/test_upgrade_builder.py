from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from app.config import parse_agent_config
from services.upgrade import (
    CycleReport,
    HttpManifestSource,
    JsonFileVersionStore,
    LocalFileManifestSource,
    PeriodicChecker,
    build_reconciler,
)
from services.upgrade.builder import _build_manifest_source
from shared import logging_config
from tests.unit.upgrade_test_utils import (
    FakeDownloader,
    RecordingSupervisor,
    StaticManifestSource,
    make_entry,
)


def _config(tmp_path: Path, **overrides):
    data = {
        "dist_dir": str(tmp_path / "dist"),
        "identifiers": ["5"],
        "manifest_url": "https://fleet.example.invalid/api/manifest",
        "api_key": "real-api-key",
        "client_ids": {"5": "client-five"},
        "platform": "linux",
    }
    data.update(overrides)
    return parse_agent_config(data, base_dir=tmp_path)


def test_manifest_source_prefers_local_file(tmp_path: Path) -> None:
    config = _config(tmp_path, manifest_file="manifest.json")

    source = _build_manifest_source(config)

    assert isinstance(source, LocalFileManifestSource)
    assert str(source) == str(tmp_path / "manifest.json")


def test_manifest_source_uses_http_endpoint(tmp_path: Path) -> None:
    source = _build_manifest_source(_config(tmp_path, http_timeout_seconds=4))

    assert isinstance(source, HttpManifestSource)
    assert source.url == "https://fleet.example.invalid/api/manifest"


def test_build_reconciler_wires_configuration(tmp_path: Path) -> None:
    entry = make_entry()
    supervisor = RecordingSupervisor()
    downloader = FakeDownloader()
    downloader.add(entry)
    config = _config(tmp_path)

    reconciler = build_reconciler(
        config,
        supervisor=supervisor,
        manifest_source=StaticManifestSource([entry]),
        downloader=downloader,
    )
    report = reconciler.check()

    assert report.identifiers[0].upgraded == ["miner"]
    conf = tmp_path / "dist" / "5" / "miner-2.0" / "conf" / "app.conf"
    assert conf.read_text(encoding="utf-8") == (
        "api_key=real-api-key\nclient_id=client-five\nthreads=4\n"
    )
    reloaded = JsonFileVersionStore(config.state_path).get_versions()
    assert reloaded["5"].as_dict() == {"miner": "2.0"}


def test_build_reconciler_registers_credentials_as_secrets(tmp_path: Path) -> None:
    build_reconciler(
        _config(tmp_path),
        supervisor=RecordingSupervisor(),
        manifest_source=StaticManifestSource([]),
        downloader=FakeDownloader(),
    )

    assert logging_config._sanitize_text("key real-api-key id client-five") == (
        "key <redacted> id <redacted>"
    )


class _ScriptedReconciler:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = 0
        self.error = error
        self.entered = threading.Event()
        self.release = threading.Event()
        self.block = False

    def check(self) -> CycleReport:
        self.calls += 1
        if self.block:
            self.entered.set()
            self.release.wait(5)
        if self.error is not None:
            raise self.error
        return CycleReport(manifest_available=True)


def test_run_once_returns_cycle_report() -> None:
    reconciler = _ScriptedReconciler()

    report = PeriodicChecker(reconciler, 60).run_once()

    assert report is not None
    assert report.manifest_available is True


def test_run_once_logs_and_swallows_unexpected_errors(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR, logger="services.upgrade.builder")
    checker = PeriodicChecker(_ScriptedReconciler(RuntimeError("boom")), 60)

    assert checker.run_once() is None
    assert any("Unexpected error" in record.getMessage() for record in caplog.records)


def test_overlapping_cycle_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="services.upgrade.builder")
    reconciler = _ScriptedReconciler()
    reconciler.block = True
    checker = PeriodicChecker(reconciler, 60)

    worker = threading.Thread(target=checker.run_once)
    worker.start()
    assert reconciler.entered.wait(5)
    try:
        assert checker.run_once() is None
    finally:
        reconciler.release.set()
        worker.join(5)

    assert reconciler.calls == 1
    assert any("still running" in record.getMessage() for record in caplog.records)


def test_start_runs_cycles_until_stopped() -> None:
    reconciler = _ScriptedReconciler()
    reconciler.block = True
    checker = PeriodicChecker(reconciler, 60)

    checker.start()
    try:
        assert reconciler.entered.wait(5)
    finally:
        reconciler.release.set()
        checker.stop(timeout=5)

    assert checker.wait(0) is True
    assert reconciler.calls == 1
