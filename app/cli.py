"""Command line entry point for the fleet agent."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from app.config import ConfigError, load_agent_config
from app.version import get_agent_version
from services.upgrade.builder import PeriodicChecker, build_reconciler
from shared.logging_config import LogVerbosity, ensure_app_logging, set_file_log_verbosity


_LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="fleet-agent",
        description="Keep this host's managed applications in line with the fleet manifest.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the agent JSON configuration (defaults to $FLEET_AGENT_CONFIG).",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconciliation cycle and exit.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between cycles, overriding poll_interval_seconds.",
    )
    parser.add_argument(
        "--verbosity",
        choices=[level.value for level in LogVerbosity],
        default=None,
        help="Minimum severity written to the log file.",
    )
    parser.add_argument("--version", action="version", version=get_agent_version())
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    ensure_app_logging()

    try:
        config = load_agent_config(args.config)
    except ConfigError as exc:
        _LOGGER.error("Invalid agent configuration: %s", exc)
        print(f"fleet-agent: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    set_file_log_verbosity(args.verbosity or config.log_verbosity)
    _LOGGER.info(
        "Fleet agent %s managing identifiers %s in %s",
        get_agent_version(),
        ", ".join(config.identifiers),
        config.dist_dir,
    )

    reconciler = build_reconciler(config)
    interval = args.interval if args.interval and args.interval > 0 else config.poll_interval_seconds
    checker = PeriodicChecker(reconciler, interval)

    if args.once:
        report = checker.run_once()
        if report is None or not report.manifest_available or report.failed:
            return EXIT_FAILURES
        return EXIT_OK

    checker.start()
    try:
        checker.wait()
    except KeyboardInterrupt:
        _LOGGER.info("Interrupted; shutting down")
    finally:
        checker.stop(timeout=5.0)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
