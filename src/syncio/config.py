"""Runtime configuration for the Syncio sync engine.

Settings are read from the process environment (a local ``.env`` file is
loaded first via python-dotenv) so the same code runs unchanged under the
API server, the scheduler and the CLI.

Environment Variables:
    STREMIO_API_URL: Addon collection API base (default: https://api.strem.io)
    STREMIO_LINK_URL: Device link API base (default: https://link.stremio.com)
    STREMIO_LINK_HOST: Value sent as X-Requested-With on link calls
    SYNC_MAX_RETRIES: Retries after the first attempt for transient errors (default: 3)
    SYNC_INITIAL_BACKOFF: Seconds before the first retry, doubled each time (default: 0.5)
    SYNC_ATTEMPT_TIMEOUT: Seconds allowed for one remote attempt (default: 10)
    SYNC_UNSAFE_MODE: Allow removing Stremio system addons (default: false)
    SYNC_CONCURRENCY: Users synced in parallel in a group sync (default: 5)
    SYNC_INTERVAL_MINUTES: Scheduler interval, 0 disables (default: 60)
    DEVICE_AUTH_POLL_INTERVAL: Seconds between device code polls (default: 5)
    DEVICE_AUTH_TTL: Device code lifetime in seconds (default: 300)
    SESSION_TTL: Seconds a login session stays valid, 0 never expires (default: 86400)
    DATABASE_URL: PostgreSQL DSN for the repositories
"""
import os
from typing import Optional

from dotenv import load_dotenv

from .api.exceptions import ConfigurationError

load_dotenv()


def _env_bool(key: str, default: bool) -> bool:
    return os.getenv(key, "true" if default else "false").strip().lower() in ("1", "true", "yes")


def _env_number(key: str, default, cast=float):
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{key} must be a number, got {raw!r}",
            details={"key": key},
            cause=e,
        ) from e
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative", details={"key": key})
    return value


class SyncSettings:
    """Configuration loaded from environment variables."""

    def __init__(self):
        self.stremio_api_url = os.getenv("STREMIO_API_URL", "https://api.strem.io").rstrip("/")
        self.stremio_link_url = os.getenv("STREMIO_LINK_URL", "https://link.stremio.com").rstrip("/")
        self.stremio_link_host = os.getenv("STREMIO_LINK_HOST", "syncio")

        self.max_retries = _env_number("SYNC_MAX_RETRIES", 3, int)
        self.initial_backoff = _env_number("SYNC_INITIAL_BACKOFF", 0.5)
        self.attempt_timeout = _env_number("SYNC_ATTEMPT_TIMEOUT", 10.0)
        self.unsafe_mode = _env_bool("SYNC_UNSAFE_MODE", False)
        self.concurrency = max(1, _env_number("SYNC_CONCURRENCY", 5, int))
        self.interval_minutes = _env_number("SYNC_INTERVAL_MINUTES", 60, int)

        self.poll_interval = _env_number("DEVICE_AUTH_POLL_INTERVAL", 5.0)
        self.device_code_ttl = _env_number("DEVICE_AUTH_TTL", 300.0)
        self.session_ttl = _env_number("SESSION_TTL", 86400.0)

        self.database_url: Optional[str] = os.getenv("DATABASE_URL")

    def require_database_url(self) -> str:
        """Return DATABASE_URL or raise ConfigurationError."""
        if not self.database_url:
            raise ConfigurationError(
                "DATABASE_URL environment variable is required",
                missing_keys=["DATABASE_URL"],
            )
        return self.database_url

    def __repr__(self):
        return (
            f"SyncSettings("
            f"api={self.stremio_api_url}, "
            f"retries={self.max_retries}, "
            f"timeout={self.attempt_timeout}s, "
            f"unsafe={self.unsafe_mode}, "
            f"interval={self.interval_minutes}m)"
        )
