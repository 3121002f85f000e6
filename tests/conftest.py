from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path() -> None:
    """Guarantee the repository root is discoverable for absolute imports."""

    root = Path(__file__).resolve().parent.parent
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)


_ensure_project_root_on_path()

from shared import logging_config  # noqa: E402


@pytest.fixture(autouse=True)
def _agent_env(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Keep agent logs and configuration lookups away from real user data."""

    log_dir = tmp_path_factory.mktemp("logs")
    monkeypatch.setenv("FLEET_AGENT_LOG_DIR", str(log_dir))
    monkeypatch.delenv("FLEET_AGENT_LOG_FILE", raising=False)
    monkeypatch.delenv("FLEET_AGENT_CONFIG", raising=False)
    monkeypatch.delenv("FLEET_AGENT_API_KEY", raising=False)
    monkeypatch.delenv("FLEET_AGENT_VERSION", raising=False)
    try:
        yield
    finally:
        logging_config._reset_for_tests()
