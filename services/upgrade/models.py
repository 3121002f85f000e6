"""Data models and errors used by the upgrade service."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


class UpgradeError(RuntimeError):
    """Raised when an application cannot be installed or upgraded."""


class ArchiveError(UpgradeError):
    """Raised when a release archive is unreadable or unsafe to extract."""


class SupervisorError(UpgradeError):
    """Raised when an application process cannot be started or stopped."""


class VersionStoreError(UpgradeError):
    """Raised when installed versions cannot be persisted."""


@dataclass(frozen=True)
class InstalledRelease:
    """A release whose files and configuration are fully in place.

    Only the upgrade engine creates these, and only once every destructive step
    has completed; committing one is what advances the version record.
    """

    alias: str
    version: str
    app_dir: Path


@dataclass
class IdentifierReport:
    """What happened to one identifier during a reconciliation cycle."""

    identifier: str
    upgraded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)


@dataclass
class CycleReport:
    """Summary of a single :meth:`Reconciler.check` invocation."""

    manifest_available: bool = False
    identifiers: list[IdentifierReport] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(report.failed for report in self.identifiers)
