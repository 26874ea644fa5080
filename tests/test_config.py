"""Tests for environment-driven settings."""
import sys

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.syncio.api.exceptions import ConfigurationError
from src.syncio.config import SyncSettings

SETTINGS_ENV = [
    "STREMIO_API_URL",
    "SYNC_MAX_RETRIES",
    "SYNC_INITIAL_BACKOFF",
    "SYNC_ATTEMPT_TIMEOUT",
    "SYNC_UNSAFE_MODE",
    "SYNC_CONCURRENCY",
    "SYNC_INTERVAL_MINUTES",
    "DEVICE_AUTH_POLL_INTERVAL",
    "DEVICE_AUTH_TTL",
    "SESSION_TTL",
    "DATABASE_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in SETTINGS_ENV:
        monkeypatch.delenv(key, raising=False)


class TestSyncSettings:
    """Defaults and overrides."""

    def test_defaults(self):
        settings = SyncSettings()

        assert settings.stremio_api_url == "https://api.strem.io"
        assert settings.max_retries == 3
        assert settings.initial_backoff == 0.5
        assert settings.attempt_timeout == 10.0
        assert settings.unsafe_mode is False
        assert settings.poll_interval == 5.0
        assert settings.device_code_ttl == 300.0
        assert settings.session_ttl == 86400.0
        assert settings.database_url is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("STREMIO_API_URL", "https://api.test/")
        monkeypatch.setenv("SYNC_MAX_RETRIES", "5")
        monkeypatch.setenv("SYNC_UNSAFE_MODE", "true")
        monkeypatch.setenv("SYNC_CONCURRENCY", "0")
        monkeypatch.setenv("SESSION_TTL", "0")

        settings = SyncSettings()

        assert settings.stremio_api_url == "https://api.test"
        assert settings.max_retries == 5
        assert settings.unsafe_mode is True
        assert settings.concurrency == 1
        assert settings.session_ttl == 0

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("SYNC_ATTEMPT_TIMEOUT", "soon")
        with pytest.raises(ConfigurationError) as exc_info:
            SyncSettings()
        assert exc_info.value.details["key"] == "SYNC_ATTEMPT_TIMEOUT"

    def test_negative_number(self, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_RETRIES", "-1")
        with pytest.raises(ConfigurationError):
            SyncSettings()

    def test_require_database_url(self, monkeypatch):
        with pytest.raises(ConfigurationError) as exc_info:
            SyncSettings().require_database_url()
        assert exc_info.value.details["missing_keys"] == ["DATABASE_URL"]

        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/syncio")
        assert SyncSettings().require_database_url() == "postgresql://localhost/syncio"

    def test_repr_has_no_database_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://user:pw@localhost/syncio")
        assert "pw" not in repr(SyncSettings())
