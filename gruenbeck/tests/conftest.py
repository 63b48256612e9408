"""
Shared test fixtures for collector tests.

Provides environment variable fixtures for GruenbeckSettings tests. All
collector env vars are cleaned before each test to ensure isolation.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import pytest

# All GruenbeckSettings environment variable names, used for cleanup.
_ALL_COLLECTOR_ENV_VARS = (
    "GRUENBECK_HOST",
    "GRUENBECK_RETRY",
    "HISTORY_ENABLED",
    "STATE_DIR",
    "POLL_INTERVAL_S",
    "REQUEST_TIMEOUT_S",
    "INGEST_BASE_URL",
    "INGEST_TOKEN",
    "BATCH_SIZE",
    "UPLOAD_INTERVAL_S",
    "SPOOL_PATH",
    "HEALTH_PATH",
)


@pytest.fixture(autouse=True)
def _clean_collector_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all collector env vars and isolate from .env files before each test."""
    for var in _ALL_COLLECTOR_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set every collector environment variable."""
    env = {
        "GRUENBECK_HOST": "192.168.1.40",
        "GRUENBECK_RETRY": "3",
        "HISTORY_ENABLED": "false",
        "STATE_DIR": "/tmp/gruenbeck-state",
        "POLL_INTERVAL_S": "120",
        "REQUEST_TIMEOUT_S": "5",
        "INGEST_BASE_URL": "https://metrics.example.com",
        "INGEST_TOKEN": "test-ingest-token",
        "BATCH_SIZE": "50",
        "UPLOAD_INTERVAL_S": "20",
        "SPOOL_PATH": "/tmp/test-spool.db",
        "HEALTH_PATH": "/tmp/test-health.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables."""
    env = {
        "GRUENBECK_HOST": "softener.local",
        "INGEST_BASE_URL": "https://ingest.example.com",
        "INGEST_TOKEN": "token-xyz",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
