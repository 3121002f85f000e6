"""Logging setup shared by the agent's entry points.

Each reconciliation cycle is logged to a single file so operators can collect
it when an application fails to install.  Calling :func:`ensure_app_logging`
more than once is harmless; handlers are only installed the first time.

The log location can be overridden through the environment:

``FLEET_AGENT_LOG_FILE``
    Full path of the log file.

``FLEET_AGENT_LOG_DIR``
    Directory that receives ``agent.log``.  Ignored when
    ``FLEET_AGENT_LOG_FILE`` is set.

Every formatted record passes through a redactor that masks credentials
registered with :func:`register_secret` as well as the local account name and
home directory.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

_LOG_FILE_ENV = "FLEET_AGENT_LOG_FILE"
_LOG_DIR_ENV = "FLEET_AGENT_LOG_DIR"
_LOG_NAME = "agent.log"
_HANDLER_TAG = "_fleet_agent_logging_handler"
_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

USER_PLACEHOLDER = "<user>"
USER_HOME_PLACEHOLDER = "<user_home>"
SECRET_PLACEHOLDER = "<redacted>"


class LogVerbosity(str, Enum):
    """How much the agent writes to its log file."""

    DISABLED = "disabled"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    VERBOSE = "verbose"

    @property
    def level(self) -> int:
        if self is LogVerbosity.DISABLED:
            return logging.CRITICAL + 1
        if self is LogVerbosity.VERBOSE:
            return logging.DEBUG
        return logging.getLevelName(self.value.upper())

    @classmethod
    def parse(cls, value: "LogVerbosity | str") -> "LogVerbosity":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unsupported log verbosity: {value}") from exc


class _Redactor:
    """Mask credentials and the local account's identity in log text."""

    def __init__(self) -> None:
        self._secrets: set[str] = set()
        self._identity: list[tuple[re.Pattern[str], str]] | None = None

    def add_secret(self, value: str) -> None:
        self._secrets.add(value)

    def clear(self) -> None:
        self._secrets.clear()
        self._identity = None

    def __call__(self, text: str) -> str:
        if not text:
            return text
        # Longest first so a secret containing another is masked whole.
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, SECRET_PLACEHOLDER)
        for pattern, placeholder in self._identity_patterns():
            text = pattern.sub(placeholder, text)
        return text

    def _identity_patterns(self) -> list[tuple[re.Pattern[str], str]]:
        if self._identity is None:
            self._identity = _identity_patterns()
        return self._identity


def _identity_patterns() -> list[tuple[re.Pattern[str], str]]:
    home = Path.home()
    homes = {str(home)}
    homes.update(
        os.path.expanduser(value)
        for value in (os.environ.get("HOME"), os.environ.get("USERPROFILE"))
        if value
    )
    homes = {os.path.normpath(path) for path in homes if path.strip()} - {os.sep, "."}

    names = {home.name}
    names.update(os.environ.get(var, "") for var in ("USERNAME", "USER", "LOGNAME"))
    names = {name.strip() for name in names if name.strip()}

    path_flags = re.IGNORECASE if os.name == "nt" else 0
    patterns = [
        (re.compile(re.escape(path), path_flags), USER_HOME_PLACEHOLDER)
        for path in sorted(homes, key=len, reverse=True)
    ]
    for name in sorted(names, key=len, reverse=True):
        escaped = re.escape(name)
        if any(char.isalnum() for char in name):
            escaped = rf"(?<!\w){escaped}(?!\w)"
        patterns.append((re.compile(escaped, re.IGNORECASE), USER_PLACEHOLDER))
    return patterns


class _RedactingFormatter(logging.Formatter):
    def __init__(self, redactor: _Redactor) -> None:
        super().__init__(_FORMAT, datefmt=_DATE_FORMAT)
        self._redact = redactor

    def format(self, record: logging.LogRecord) -> str:
        return self._redact(super().format(record))


@dataclass
class _LoggingState:
    log_path: Path | None = None
    file_handler: logging.FileHandler | None = None
    verbosity: LogVerbosity = LogVerbosity.INFO


_REDACTOR = _Redactor()
_STATE = _LoggingState()


def register_secret(value: str | None) -> None:
    """Mask ``value`` wherever it appears in formatted log records."""

    if value and value.strip():
        _REDACTOR.add_secret(value)


def _sanitize_text(message: str) -> str:
    return _REDACTOR(message)


def ensure_app_logging() -> Path:
    """Attach the agent's handlers to the root logger and return the log path.

    A file handler is always installed; a console handler is added only when
    stderr is an interactive terminal that no other handler already writes to.
    """

    if _STATE.log_path is not None:
        return _STATE.log_path

    log_path = _resolve_log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    formatter = _RedactingFormatter(_REDACTOR)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    _attach(root, file_handler, _STATE.verbosity.level, formatter)
    if _wants_console(root):
        _attach(root, logging.StreamHandler(), logging.INFO, formatter)

    _STATE.log_path = log_path
    _STATE.file_handler = file_handler
    logging.getLogger(__name__).info(
        "Writing agent logs to %s (verbosity=%s)", log_path, _STATE.verbosity.value
    )
    return log_path


def set_file_log_verbosity(verbosity: LogVerbosity | str) -> None:
    """Change the minimum severity written to the log file."""

    verbosity = LogVerbosity.parse(verbosity)
    ensure_app_logging()
    _STATE.verbosity = verbosity
    if _STATE.file_handler is not None:
        _STATE.file_handler.setLevel(verbosity.level)
    logging.getLogger(__name__).info("File log verbosity set to %s", verbosity.value)


def get_file_log_verbosity() -> LogVerbosity:
    return _STATE.verbosity


def _attach(
    root: logging.Logger,
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    setattr(handler, _HANDLER_TAG, True)
    root.addHandler(handler)


def _resolve_log_path() -> Path:
    explicit = os.environ.get(_LOG_FILE_ENV)
    if explicit:
        return Path(explicit).expanduser()
    directory = os.environ.get(_LOG_DIR_ENV)
    if directory:
        return Path(directory).expanduser() / _LOG_NAME
    return Path.home() / ".fleet_agent" / "logs" / _LOG_NAME


def _wants_console(root: logging.Logger) -> bool:
    stderr = sys.stderr
    try:
        interactive = bool(stderr is not None and stderr.isatty())
    except (AttributeError, OSError, ValueError):
        return False
    if not interactive:
        return False
    return not any(
        isinstance(handler, logging.StreamHandler) and handler.stream is stderr
        for handler in root.handlers
    )


def _reset_for_tests() -> None:
    """Detach the agent's handlers and forget registered secrets."""

    global _STATE

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()
    _STATE = _LoggingState()
    _REDACTOR.clear()


__all__ = [
    "LogVerbosity",
    "SECRET_PLACEHOLDER",
    "ensure_app_logging",
    "get_file_log_verbosity",
    "register_secret",
    "set_file_log_verbosity",
]
