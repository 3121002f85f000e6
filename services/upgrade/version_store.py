"""Installed-version bookkeeping, partitioned by identifier."""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Callable, Dict, Iterator, Protocol

from services.upgrade.models import VersionStoreError


_LOGGER = logging.getLogger(__name__)


class VersionRecord(Mapping[str, str]):
    """Alias to installed version mapping for one identifier.

    Reads behave like a plain mapping.  The only way to change a record is
    :meth:`commit`, which the upgrade engine calls once an install has fully
    completed.
    """

    def __init__(
        self,
        identifier: str,
        versions: Mapping[str, str] | None = None,
        *,
        on_commit: Callable[["VersionRecord"], None] | None = None,
    ) -> None:
        self.identifier = identifier
        self._versions: Dict[str, str] = dict(versions or {})
        self._lock = threading.RLock()
        self._on_commit = on_commit

    def __getitem__(self, alias: str) -> str:
        with self._lock:
            return self._versions[alias]

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._versions))

    def __len__(self) -> int:
        with self._lock:
            return len(self._versions)

    def __repr__(self) -> str:
        return f"VersionRecord({self.identifier!r}, {self.as_dict()!r})"

    def as_dict(self) -> dict[str, str]:
        with self._lock:
            return dict(self._versions)

    def commit(self, alias: str, version: str) -> None:
        """Record ``version`` as installed for ``alias``.

        When persistence fails the previous value is restored before the error
        propagates, so memory and disk never disagree.
        """

        with self._lock:
            previous = self._versions.get(alias)
            self._versions[alias] = version
            if self._on_commit is None:
                return
            try:
                self._on_commit(self)
            except Exception:
                if previous is None:
                    self._versions.pop(alias, None)
                else:
                    self._versions[alias] = previous
                raise


class VersionStore(Protocol):
    """Protocol describing where installed versions are kept."""

    def get_versions(self) -> Dict[str, VersionRecord]:
        """Return every known record keyed by identifier."""

    def record_for(self, identifier: str) -> VersionRecord:
        """Return the record for ``identifier``, creating an empty one if needed."""


class InMemoryVersionStore:
    """Keep versions for the lifetime of the process only."""

    def __init__(self, initial: Mapping[str, Mapping[str, str]] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, VersionRecord] = {
            str(identifier): VersionRecord(str(identifier), versions)
            for identifier, versions in (initial or {}).items()
        }

    def get_versions(self) -> Dict[str, VersionRecord]:
        with self._lock:
            return dict(self._records)

    def record_for(self, identifier: str) -> VersionRecord:
        with self._lock:
            record = self._records.get(identifier)
            if record is None:
                record = VersionRecord(identifier)
                self._records[identifier] = record
            return record


class JsonFileVersionStore:
    """Persist versions to a JSON document after every commit."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._records: Dict[str, VersionRecord] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def get_versions(self) -> Dict[str, VersionRecord]:
        with self._lock:
            return dict(self._load())

    def record_for(self, identifier: str) -> VersionRecord:
        with self._lock:
            records = self._load()
            record = records.get(identifier)
            if record is None:
                record = self._new_record(identifier, {})
                records[identifier] = record
            return record

    def _new_record(self, identifier: str, versions: Mapping[str, str]) -> VersionRecord:
        return VersionRecord(identifier, versions, on_commit=self._persist)

    def _load(self) -> Dict[str, VersionRecord]:
        if self._records is not None:
            return self._records

        data = self._read_document()
        self._records = {
            identifier: self._new_record(identifier, versions)
            for identifier, versions in data.items()
        }
        _LOGGER.debug(
            "Loaded installed versions for %s identifier(s) from %s",
            len(self._records),
            self._path,
        )
        return self._records

    def _read_document(self) -> Dict[str, Dict[str, str]]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            _LOGGER.warning("Unable to read installed versions from %s: %s", self._path, exc)
            return {}

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            _LOGGER.warning("Ignoring corrupt version file %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            _LOGGER.warning("Ignoring version file %s with unexpected layout", self._path)
            return {}

        data: Dict[str, Dict[str, str]] = {}
        for identifier, versions in payload.items():
            if not isinstance(versions, dict):
                continue
            data[str(identifier)] = {
                str(alias): str(version)
                for alias, version in versions.items()
                if isinstance(version, str) and version
            }
        return data

    def _persist(self, _record: VersionRecord) -> None:
        with self._lock:
            records = self._load()
            data = {identifier: record.as_dict() for identifier, record in records.items()}
            payload = json.dumps(data, indent=2, sort_keys=True) + "\n"
            temp_path = self._path.with_name(f"{self._path.name}.tmp")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                temp_path.write_text(payload, encoding="utf-8")
                os.replace(temp_path, self._path)
            except OSError as exc:
                raise VersionStoreError(
                    f"Failed to persist installed versions to {self._path}: {exc}"
                ) from exc
        _LOGGER.debug("Persisted installed versions to %s", self._path)


__all__ = [
    "InMemoryVersionStore",
    "JsonFileVersionStore",
    "VersionRecord",
    "VersionStore",
]
