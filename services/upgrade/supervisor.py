"""Process supervisors that start and stop managed applications."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import Any, Dict, Protocol, Tuple

from domain.manifest import ManifestEntry
from services.upgrade.constants import (
    POSIX_EXECUTABLE_EXTENSIONS,
    WINDOWS_EXECUTABLE_EXTENSIONS,
)
from services.upgrade.models import SupervisorError
from services.upgrade.paths import app_directory


_LOGGER = logging.getLogger(__name__)


class ProcessSupervisor(Protocol):
    """Protocol describing the component that runs installed applications."""

    def start_app(self, dist: Path, entry: ManifestEntry, version: str | None) -> None:
        """Ensure the installed ``version`` of ``entry`` is running."""

    def stop_app(self, dist: Path, alias: str) -> None:
        """Stop ``alias`` if it is running."""


class SubprocessSupervisor:
    """Launch applications as child processes and track their handles."""

    def __init__(self, *, stop_timeout: float = 10.0) -> None:
        self._stop_timeout = stop_timeout
        self._processes: Dict[Tuple[Path, str], subprocess.Popen] = {}
        self._lock = threading.Lock()

    def is_running(self, dist: Path, alias: str) -> bool:
        with self._lock:
            process = self._processes.get(self._key(dist, alias))
        return process is not None and process.poll() is None

    def start_app(self, dist: Path, entry: ManifestEntry, version: str | None) -> None:
        if not version:
            _LOGGER.debug("Not starting %s: no version installed in %s", entry.alias, dist)
            return

        key = self._key(dist, entry.alias)
        with self._lock:
            process = self._processes.get(key)
            if process is not None and process.poll() is None:
                _LOGGER.debug("%s is already running (pid %s)", entry.alias, process.pid)
                return
            if process is not None:
                _LOGGER.warning(
                    "%s exited with status %s; restarting", entry.alias, process.returncode
                )

            app_dir = app_directory(dist, entry, version)
            if not app_dir.is_dir():
                raise SupervisorError(f"Install directory for {entry.alias} not found: {app_dir}")
            executable = resolve_executable(app_dir, entry.entry_point)
            if executable is None:
                raise SupervisorError(f"No executable found for {entry.alias} in {app_dir}")

            _LOGGER.info("Starting %s %s from %s", entry.app, version, executable)
            try:
                self._processes[key] = subprocess.Popen(
                    [str(executable)],
                    cwd=str(app_dir),
                    **_popen_kwargs(),
                )
            except OSError as exc:
                raise SupervisorError(f"Failed to start {entry.alias}: {exc}") from exc

    def stop_app(self, dist: Path, alias: str) -> None:
        with self._lock:
            process = self._processes.pop(self._key(dist, alias), None)
        if process is None or process.poll() is not None:
            _LOGGER.debug("%s is not running", alias)
            return

        _LOGGER.info("Stopping %s (pid %s)", alias, process.pid)
        try:
            process.terminate()
            try:
                process.wait(timeout=self._stop_timeout)
            except subprocess.TimeoutExpired:
                _LOGGER.warning(
                    "%s did not exit within %ss; killing", alias, self._stop_timeout
                )
                process.kill()
                process.wait(timeout=self._stop_timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise SupervisorError(f"Failed to stop {alias}: {exc}") from exc

    @staticmethod
    def _key(dist: Path, alias: str) -> Tuple[Path, str]:
        return (Path(dist).resolve(), alias)


def resolve_executable(app_dir: Path, entry_point: str | None) -> Path | None:
    """Return the program to launch from ``app_dir``.

    A declared ``entry_point`` wins when it exists inside ``app_dir``;
    otherwise the shallowest file with a platform executable extension is used.
    """

    root = app_dir.resolve()
    if entry_point:
        components = [part for part in entry_point.split("/") if part and part != "."]
        candidate = root.joinpath(*components).resolve()
        try:
            candidate.relative_to(root)
        except ValueError:
            _LOGGER.warning("Ignoring entry point outside %s: %s", app_dir, entry_point)
        else:
            if candidate.is_file():
                return candidate
            _LOGGER.debug("Declared entry point %s does not exist", candidate)

    candidates = [path for path in root.rglob("*") if path.is_file() and _is_executable(path)]
    if not candidates:
        return None

    def _sort_key(path: Path) -> tuple[int, str]:
        return (len(path.relative_to(root).parts), path.name.lower())

    candidates.sort(key=_sort_key)
    return candidates[0]


def _is_executable(path: Path) -> bool:
    suffix = path.suffix.lower()
    if os.name == "nt":
        return suffix in WINDOWS_EXECUTABLE_EXTENSIONS
    return suffix in POSIX_EXECUTABLE_EXTENSIONS and os.access(path, os.X_OK)


def _popen_kwargs() -> dict[str, Any]:
    popen_kwargs: dict[str, Any] = {
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
    }
    if os.name == "nt":  # pragma: no cover - exercised on Windows
        creationflags = getattr(subprocess, "CREATE_NO_WINDOW", 0)
        if creationflags:
            popen_kwargs["creationflags"] = creationflags
        if hasattr(subprocess, "STARTUPINFO"):
            startupinfo = subprocess.STARTUPINFO()
            startupinfo.dwFlags |= getattr(subprocess, "STARTF_USESHOWWINDOW", 0)
            startupinfo.wShowWindow = getattr(subprocess, "SW_HIDE", 0)
            popen_kwargs["startupinfo"] = startupinfo
    return popen_kwargs


__all__ = [
    "ProcessSupervisor",
    "SubprocessSupervisor",
    "resolve_executable",
]
