from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path

import pytest

from domain.manifest import PLATFORM_LINUX, PLATFORM_WINDOWS, ReleaseDescriptor, parse_manifest
from tests.unit.upgrade_test_utils import (
    API_KEY,
    API_KEY_TOKEN,
    build_harness,
    build_release_zip,
    make_entry,
)


def test_fresh_install_end_to_end(tmp_path: Path) -> None:
    entry = make_entry("miner", "2.0")
    harness = build_harness(tmp_path, [entry])
    harness.downloader.add(entry)

    report = harness.reconciler.check()

    dist = harness.dist_root / "5"
    assert report.manifest_available is True
    assert report.identifiers[0].upgraded == ["miner"]
    assert harness.supervisor.calls == [
        ("stop", dist, "miner"),
        ("start", dist, "miner", "2.0"),
    ]
    assert harness.downloader.requested == ["http://x/miner-2.0.zip"]
    conf = (dist / "miner-2.0" / "conf" / "app.conf").read_text(encoding="utf-8")
    assert conf == f"api_key={API_KEY}\nclient_id=client-5\nthreads=4\n"
    assert {k: v.as_dict() for k, v in harness.store.get_versions().items()} == {
        "5": {"miner": "2.0"}
    }


def test_second_cycle_is_idempotent(tmp_path: Path) -> None:
    entry = make_entry()
    harness = build_harness(tmp_path, [entry])
    harness.downloader.add(entry)

    harness.reconciler.check()
    report = harness.reconciler.check()

    assert harness.downloader.requested == ["http://x/miner-2.0.zip"]
    assert report.identifiers[0].upgraded == []
    assert harness.supervisor.started() == [("miner", "2.0"), ("miner", "2.0")]
    assert harness.supervisor.stopped() == ["miner"]


def test_downgrade_is_still_installed(tmp_path: Path) -> None:
    entry = make_entry(version="1.0")
    harness = build_harness(tmp_path, [entry], initial={"5": {"miner": "1.1"}})
    harness.downloader.add(entry)

    harness.reconciler.check()

    assert harness.store.record_for("5").as_dict() == {"miner": "1.0"}


def test_leftover_placeholder_forces_reinstall(tmp_path: Path) -> None:
    entry = make_entry(version="2.0")
    harness = build_harness(tmp_path, [entry], initial={"5": {"miner": "2.0"}})
    harness.downloader.add(entry)
    conf = harness.dist_root / "5" / "miner-2.0" / "conf" / "app.conf"
    conf.parent.mkdir(parents=True)
    conf.write_text(f"api_key={API_KEY_TOKEN}\n", encoding="utf-8")

    report = harness.reconciler.check()

    assert report.identifiers[0].upgraded == ["miner"]
    assert conf.read_text(encoding="utf-8") == f"api_key={API_KEY}\n"


def test_manifest_fetch_failure_is_a_no_op(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING, logger="services.upgrade.reconciler")
    harness = build_harness(tmp_path, None, initial={"5": {"miner": "1.0"}})

    report = harness.reconciler.check()

    assert report.manifest_available is False
    assert report.identifiers == []
    assert harness.supervisor.calls == []
    assert harness.downloader.requested == []
    assert any("Failed to obtain app manifests" in r.getMessage() for r in caplog.records)


def test_empty_manifest_is_a_no_op(tmp_path: Path) -> None:
    harness = build_harness(tmp_path, [], initial={"5": {"miner": "1.0"}})

    report = harness.reconciler.check()

    assert report.manifest_available is False
    assert harness.supervisor.calls == []


def test_download_failure_does_not_block_later_apps(tmp_path: Path) -> None:
    broken = make_entry("miner", "2.0")
    healthy = make_entry("proxy", "1.0")
    harness = build_harness(tmp_path, [broken, healthy])
    harness.downloader.add(healthy)

    report = harness.reconciler.check()

    assert harness.store.record_for("5").as_dict() == {"proxy": "1.0"}
    assert report.identifiers[0].upgraded == ["proxy"]
    assert harness.supervisor.started() == [("miner", None), ("proxy", "1.0")]


def test_extraction_failure_is_isolated_and_keeps_version(tmp_path: Path) -> None:
    broken = make_entry("miner", "2.0")
    healthy = make_entry("proxy", "1.0")
    harness = build_harness(
        tmp_path, [broken, healthy], initial={"5": {"miner": "1.0"}}
    )
    harness.downloader.add(broken, b"corrupt")
    harness.downloader.add(healthy)

    report = harness.reconciler.check()

    assert harness.store.record_for("5").as_dict() == {"miner": "1.0", "proxy": "1.0"}
    assert report.identifiers[0].failed == ["miner"]
    assert report.identifiers[0].upgraded == ["proxy"]
    assert report.failed is True


def test_incomplete_install_is_retried_next_cycle(tmp_path: Path) -> None:
    entry = make_entry("miner", "2.0")
    harness = build_harness(tmp_path, [entry])
    harness.downloader.add(entry, b"corrupt")

    harness.reconciler.check()
    harness.downloader.add(entry)
    harness.reconciler.check()

    assert harness.downloader.requested == ["http://x/miner-2.0.zip"] * 2
    assert harness.store.record_for("5").as_dict() == {"miner": "2.0"}


def test_extra_alias_is_stopped_exactly_once(tmp_path: Path) -> None:
    entry = make_entry("miner", "2.0")
    harness = build_harness(
        tmp_path, [entry], initial={"5": {"miner": "2.0", "legacy": "0.1"}}
    )
    legacy_dir = harness.dist_root / "5" / "legacy-0.1"
    legacy_dir.mkdir(parents=True)

    report = harness.reconciler.check()

    assert harness.supervisor.stopped() == ["legacy"]
    assert report.identifiers[0].stopped == ["legacy"]
    assert legacy_dir.exists()
    assert harness.store.record_for("5").as_dict() == {"miner": "2.0", "legacy": "0.1"}


def test_stop_failure_for_one_extra_does_not_block_others(tmp_path: Path) -> None:
    harness = build_harness(
        tmp_path,
        [make_entry("miner", "2.0")],
        initial={"5": {"miner": "2.0", "alpha": "1", "beta": "1"}},
    )
    harness.supervisor.fail_stop_for.add("alpha")

    report = harness.reconciler.check()

    assert harness.supervisor.stopped() == ["alpha", "beta"]
    assert report.identifiers[0].stopped == ["beta"]


def test_start_failure_is_isolated(tmp_path: Path) -> None:
    first = make_entry("miner", "2.0")
    second = make_entry("proxy", "1.0")
    harness = build_harness(
        tmp_path, [first, second], initial={"5": {"miner": "2.0", "proxy": "1.0"}}
    )
    harness.supervisor.fail_start_for.add("miner")

    report = harness.reconciler.check()

    assert report.identifiers[0].failed == ["miner"]
    assert harness.supervisor.started() == [("miner", "2.0"), ("proxy", "1.0")]


def test_entries_for_other_platforms_are_ignored(tmp_path: Path) -> None:
    windows_only = make_entry("miner", "2.0", platforms=frozenset({PLATFORM_WINDOWS}))
    harness = build_harness(
        tmp_path,
        [windows_only],
        initial={"5": {"miner": "1.0"}},
        platform=PLATFORM_LINUX,
    )

    harness.reconciler.check()

    assert harness.downloader.requested == []
    assert harness.supervisor.stopped() == ["miner"]


def test_identifiers_are_isolated(tmp_path: Path) -> None:
    entry = make_entry("miner", "2.0")
    harness = build_harness(
        tmp_path,
        [entry],
        identifiers=("5", "6"),
        initial={"6": {"miner": "2.0"}},
    )
    harness.downloader.add(entry)
    conf = harness.dist_root / "6" / "miner-2.0" / "conf" / "app.conf"
    conf.parent.mkdir(parents=True)
    conf.write_text("api_key=set\n", encoding="utf-8")

    report = harness.reconciler.check()

    assert [r.identifier for r in report.identifiers] == ["5", "6"]
    assert report.identifiers[0].upgraded == ["miner"]
    assert report.identifiers[1].upgraded == []
    five_conf = harness.dist_root / "5" / "miner-2.0" / "conf" / "app.conf"
    assert "client_id=client-5" in five_conf.read_text(encoding="utf-8")
    assert harness.downloader.requested == ["http://x/miner-2.0.zip"]


def test_upgrade_replaces_previous_version_directories_only(tmp_path: Path) -> None:
    entry = make_entry("miner", "2.0", conf=False)
    harness = build_harness(
        tmp_path, [entry, make_entry("proxy", "1.0", conf=False)],
        initial={"5": {"miner": "1.0", "proxy": "1.0"}},
    )
    harness.downloader.add(entry, build_release_zip("miner", "2.0", {"bin/run.sh": "x"}))
    dist = harness.dist_root / "5"
    (dist / "miner-1.0").mkdir(parents=True)
    (dist / "proxy-1.0").mkdir()

    harness.reconciler.check()

    assert sorted(path.name for path in dist.iterdir()) == ["miner-2.0", "proxy-1.0"]


def test_entry_without_release_is_still_wanted(tmp_path: Path) -> None:
    proxy = make_entry("proxy", "1.0")
    manifest = parse_manifest(
        [
            {"alias": "miner", "version": "2.0", "windows": True},
            {
                "alias": "proxy",
                "version": "1.0",
                "windows": True,
                "github": {"zipUrl": proxy.release.url, "name": proxy.release.name},
            },
        ]
    )
    harness = build_harness(
        tmp_path, manifest, initial={"5": {"miner": "2.0", "proxy": "1.0"}}
    )

    report = harness.reconciler.check()

    assert "miner" not in harness.supervisor.stopped()
    assert report.identifiers[0].stopped == []
    assert report.identifiers[0].failed == []
    assert harness.supervisor.started() == [("miner", "2.0"), ("proxy", "1.0")]
    assert harness.downloader.requested == []


def test_entry_without_release_fails_only_that_app(tmp_path: Path) -> None:
    broken = replace(make_entry("miner", "3.0"), release=None)
    healthy = make_entry("proxy", "1.0")
    harness = build_harness(
        tmp_path, [broken, healthy], initial={"5": {"miner": "2.0"}}
    )
    harness.downloader.add(healthy)

    report = harness.reconciler.check()

    assert report.identifiers[0].failed == ["miner"]
    assert report.identifiers[0].upgraded == ["proxy"]
    assert report.identifiers[0].stopped == []
    assert "miner" not in harness.supervisor.stopped()
    assert harness.store.record_for("5").as_dict() == {"miner": "2.0", "proxy": "1.0"}


def test_archive_name_escaping_dist_fails_only_that_app(tmp_path: Path) -> None:
    escaping = replace(
        make_entry("miner", "2.0"),
        release=ReleaseDescriptor("http://x/miner-2.0.zip", "../../escaped.zip"),
    )
    healthy = make_entry("proxy", "1.0")
    harness = build_harness(
        tmp_path, [escaping, healthy], initial={"5": {"miner": "1.0"}}
    )
    harness.downloader.add(escaping)
    harness.downloader.add(healthy)

    report = harness.reconciler.check()

    assert report.identifiers[0].failed == ["miner"]
    assert report.identifiers[0].upgraded == ["proxy"]
    assert not (tmp_path / "escaped.zip").exists()
    assert "miner" not in harness.supervisor.stopped()
    assert harness.store.record_for("5").as_dict() == {"miner": "1.0", "proxy": "1.0"}
