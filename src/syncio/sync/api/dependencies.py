"""FastAPI dependency injection for the sync and device-auth API.

Lifecycle Management:
- Database pool: Initialized at startup, shared across requests
- Stremio clients: Initialized at startup, shared across requests
- SyncExecutor: One shared instance so the per-user lock spans requests
- Device auth registry: Keeps running flows addressable between requests

Security:
- API key authentication required for all endpoints (except /health)
- Set API_KEY environment variable to enable authentication
- DISABLE_AUTH=true disables it (development only)
"""

import logging
import os
import secrets
from typing import Callable, Optional

import asyncpg
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ...api.client import StremioClient
from ...api.link import StremioLinkClient
from ...api.manifests import ManifestFetcher
from ...auth import (
    AuthEvent,
    AuthSession,
    AuthStateChannel,
    DeviceAuthFlow,
    DeviceAuthRegistry,
    InMemorySessionStore,
    SessionManager,
    StremioDeviceLinkAdapter,
    StremioIdentityAdapter,
)
from ...config import SyncSettings
from ..adapters import (
    PostgresGroupRepository,
    PostgresUserRepository,
    StremioCollectionAdapter,
)
from ..domain.ports import IAddonCollectionAPI, IGroupRepository, IUserRepository
from ..use_cases import (
    DesiredStateResolver,
    GetSyncStatusUseCase,
    SyncExecutor,
    SyncGroupUseCase,
    SyncUserUseCase,
)

logger = logging.getLogger(__name__)

# ========== API Key Authentication ==========

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> bool:
    """Verify the API key from the request header.

    Security model:
    - If DISABLE_AUTH=true (dev mode): authentication is disabled
    - Otherwise: API_KEY is required (fail-closed)

    Raises:
        HTTPException: 401 if API key is missing or invalid
    """
    if os.getenv("DISABLE_AUTH", "").lower() == "true":
        logger.warning("Authentication disabled (DISABLE_AUTH=true). Only use this in development!")
        return True

    expected_key = os.getenv("API_KEY", "")
    if not expected_key:
        logger.error("API_KEY not set - rejecting request")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfiguration: API_KEY not set",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not secrets.compare_digest(api_key, expected_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return True


# ========== Global State ==========

_settings: Optional[SyncSettings] = None
_db_pool: Optional[asyncpg.Pool] = None
_stremio_client: Optional[StremioClient] = None
_link_client: Optional[StremioLinkClient] = None
_manifest_fetcher: Optional[ManifestFetcher] = None
_executor: Optional[SyncExecutor] = None
_registry: Optional[DeviceAuthRegistry] = None
_session_manager: Optional[SessionManager] = None


def get_settings() -> SyncSettings:
    """Get settings (loaded from the environment on first use)."""
    global _settings
    if _settings is None:
        _settings = SyncSettings()
    return _settings


async def init_db_pool():
    """Initialize the database connection pool.

    Should be called on application startup.
    """
    global _db_pool
    _db_pool = await asyncpg.create_pool(
        get_settings().require_database_url(),
        min_size=2,
        max_size=10,
    )


async def init_stremio_clients():
    """Initialize the Stremio clients and the shared sync state.

    Should be called on application startup.
    """
    global _stremio_client, _link_client, _manifest_fetcher
    global _executor, _registry, _session_manager

    settings = get_settings()

    _stremio_client = StremioClient(base_url=settings.stremio_api_url)
    await _stremio_client.__aenter__()

    _link_client = StremioLinkClient(
        base_url=settings.stremio_link_url,
        host=settings.stremio_link_host,
    )
    await _link_client.__aenter__()

    _manifest_fetcher = ManifestFetcher()
    await _manifest_fetcher.__aenter__()

    _executor = SyncExecutor(
        StremioCollectionAdapter(_stremio_client),
        max_retries=settings.max_retries,
        initial_backoff=settings.initial_backoff,
        attempt_timeout=settings.attempt_timeout,
    )
    _registry = DeviceAuthRegistry()

    channel = AuthStateChannel()
    channel.subscribe(_log_auth_event)
    _session_manager = SessionManager(InMemorySessionStore(), channel, ttl=settings.session_ttl or None)

    logger.info("Stremio clients initialized")


def _log_auth_event(event: AuthEvent, session: AuthSession) -> None:
    logger.info(f"Auth event {event.value} for {session.subject}")


async def close_db_pool():
    """Close the database connection pool.

    Should be called on application shutdown.
    """
    global _db_pool
    if _db_pool:
        await _db_pool.close()
        _db_pool = None


async def close_stremio_clients():
    """Cancel running device flows and close the Stremio clients.

    Should be called on application shutdown.
    """
    global _stremio_client, _link_client, _manifest_fetcher
    global _executor, _registry, _session_manager

    if _registry:
        await _registry.shutdown()

    for client in (_stremio_client, _link_client, _manifest_fetcher):
        if client:
            await client.__aexit__(None, None, None)

    _stremio_client = None
    _link_client = None
    _manifest_fetcher = None
    _executor = None
    _registry = None
    _session_manager = None

    logger.info("Stremio clients closed")


def get_db_pool() -> asyncpg.Pool:
    """Get the database connection pool."""
    if _db_pool is None:
        raise RuntimeError("Database pool not initialized. Call init_db_pool() first.")
    return _db_pool


def _require(value, name: str):
    if value is None:
        raise RuntimeError(f"{name} not initialized. Call init_stremio_clients() first.")
    return value


# ========== Dependency Functions ==========


def get_group_repo() -> IGroupRepository:
    """Get a group repository instance."""
    return PostgresGroupRepository(get_db_pool(), manifest_fetcher=_manifest_fetcher)


def get_user_repo() -> IUserRepository:
    """Get a user repository instance."""
    return PostgresUserRepository(get_db_pool())


def get_collection_api() -> IAddonCollectionAPI:
    """Get the collection adapter over the shared StremioClient."""
    return StremioCollectionAdapter(_require(_stremio_client, "Stremio client"))


def get_executor() -> SyncExecutor:
    """Get the shared SyncExecutor."""
    return _require(_executor, "Sync executor")


def get_sync_user_use_case() -> SyncUserUseCase:
    group_repo = get_group_repo()
    user_repo = get_user_repo()
    return SyncUserUseCase(
        user_repo=user_repo,
        collection_api=get_collection_api(),
        resolver=DesiredStateResolver(group_repo, user_repo, unsafe_mode=get_settings().unsafe_mode),
        executor=get_executor(),
    )


def get_sync_group_use_case() -> SyncGroupUseCase:
    return SyncGroupUseCase(
        get_sync_user_use_case(),
        get_user_repo(),
        get_group_repo(),
        max_concurrent=get_settings().concurrency,
    )


def get_status_use_case() -> GetSyncStatusUseCase:
    return GetSyncStatusUseCase(get_sync_user_use_case(), get_user_repo(), get_group_repo())


def get_device_auth_registry() -> DeviceAuthRegistry:
    return _require(_registry, "Device auth registry")


def get_session_manager() -> SessionManager:
    return _require(_session_manager, "Session manager")


DeviceFlowFactory = Callable[[Optional[str], Optional[str]], DeviceAuthFlow]


def get_device_flow_factory() -> DeviceFlowFactory:
    """Get a factory building a DeviceAuthFlow for (user_id, expected_email).

    An approved credential is stored on the user (when given) and opens a
    session for it.
    """
    settings = get_settings()
    link_api = StremioDeviceLinkAdapter(_require(_link_client, "Link client"))
    identity_api = StremioIdentityAdapter(_require(_stremio_client, "Stremio client"))
    sessions = get_session_manager()

    def build(user_id: Optional[str], expected_email: Optional[str]) -> DeviceAuthFlow:
        async def on_credential(auth_key: str) -> None:
            if user_id:
                await get_user_repo().set_auth_key(user_id, auth_key)
            await sessions.login(user_id or expected_email or "anonymous", auth_key)

        return DeviceAuthFlow(
            link_api,
            on_credential=on_credential,
            identity_api=identity_api,
            expected_email=expected_email,
            poll_interval=settings.poll_interval,
            ttl=settings.device_code_ttl,
        )

    return build
