"""Stremio API modules.

This package provides the HTTP clients for the Stremio APIs and the
cross-cutting infrastructure the sync engine builds on.

Classes:
    StremioClient: Addon collection get/set and account lookup
    StremioLinkClient: Device code create/read for the link login
    ManifestFetcher: HTTP GET of addon manifests

Exceptions:
    SyncioError: Base exception for all Syncio errors
    NotFoundError: Unknown group, user or record
    AlreadySyncingError: A sync for the user is already running
    ConfirmationRequiredError: Destructive plan executed without confirmation
    AuthExpiredError: Credential invalid or device code expired
    IdentityMismatchError: Credential belongs to another account
    TransientRemoteError: Network, timeout or 5xx failure (retried)
    ValidationError: Remote rejected an addon or request

Resilience:
    RetryPolicy, retry_async, with_timeout, CircuitBreaker, process_concurrent
"""

from .client import StremioClient, identify_rejected_addon
from .exceptions import (
    AlreadySyncingError,
    AuthenticationError,
    AuthExpiredError,
    CircuitOpenError,
    ConfigurationError,
    ConfirmationRequiredError,
    ConnectionError,
    IdentityMismatchError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RemoteError,
    ServerError,
    SyncioError,
    TimeoutError,
    TransientRemoteError,
    ValidationError,
)
from .link import DeviceCode, LinkReadResult, LinkReadState, StremioLinkClient
from .manifests import ManifestFetcher
from .resilience import (
    CircuitBreaker,
    CircuitState,
    RetryPolicy,
    process_concurrent,
    retry_async,
    with_timeout,
)

__all__ = [
    # Clients
    "StremioClient",
    "StremioLinkClient",
    "ManifestFetcher",
    "identify_rejected_addon",
    # Link results
    "DeviceCode",
    "LinkReadResult",
    "LinkReadState",
    # Exceptions
    "SyncioError",
    "ConfigurationError",
    "NotFoundError",
    "ConfirmationRequiredError",
    "AlreadySyncingError",
    "AuthenticationError",
    "AuthExpiredError",
    "IdentityMismatchError",
    "RemoteError",
    "TransientRemoteError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "ServerError",
    "RateLimitError",
    "ValidationError",
    "CircuitOpenError",
    # Resilience
    "CircuitBreaker",
    "CircuitState",
    "RetryPolicy",
    "retry_async",
    "with_timeout",
    "process_concurrent",
]
