"""Helpers for describing version changes in log output.

Upgrade decisions never depend on version ordering; a differing version is
always reinstalled.  These helpers only classify the change so operators can
tell an upgrade from a rollback in the logs.
"""

from __future__ import annotations

from packaging.version import InvalidVersion, Version


__all__ = ["describe_version_change"]


def describe_version_change(current_version: str | None, candidate: str) -> str:
    """Return ``install``, ``reinstall``, ``upgrade``, ``downgrade`` or ``change``."""

    if not current_version:
        return "install"
    if current_version == candidate:
        return "reinstall"

    try:
        current_parsed = Version(current_version)
        candidate_parsed = Version(candidate)
    except InvalidVersion:
        return "change"

    if candidate_parsed > current_parsed:
        return "upgrade"
    if candidate_parsed < current_parsed:
        return "downgrade"
    return "change"
