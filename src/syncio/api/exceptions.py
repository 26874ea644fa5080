#!/usr/bin/env python3
"""Exception Hierarchy for the Syncio addon sync engine.

Every failure the engine can surface is expressed as one of the types
below so callers (HTTP layer, scheduler, CLI) can decide what to do with
it without inspecting messages.

Design Principles:
    - All exceptions inherit from SyncioError
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability; only transient remote
      errors are ever retried
    - Each exception carries enough detail to act on (e.g. which addon
      the remote rejected)

Exception Hierarchy:
    SyncioError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── NotFoundError (caller bug - unknown group/user)
    ├── ConfirmationRequiredError (destructive plan not confirmed)
    ├── AlreadySyncingError (per-user lock contention)
    ├── AuthenticationError
    │   ├── AuthExpiredError (device code expired or credential invalid)
    │   └── IdentityMismatchError (credential belongs to someone else)
    └── RemoteError (Stremio API failures)
        ├── TransientRemoteError (recoverable - retried with backoff)
        │   ├── NetworkError
        │   │   ├── ConnectionError
        │   │   └── TimeoutError
        │   ├── ServerError
        │   └── RateLimitError
        ├── ValidationError (remote rejected an addon/request)
        └── CircuitOpenError
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class SyncioError(Exception):
    """Base exception for all Syncio errors.

    Attributes:
        message: What went wrong, safe to show after sanitization
        code: Stable machine-readable code; defaults to the class name
        details: Structured context (user id, addon, status code...)
        cause: Underlying exception, also chained as ``__cause__``
        recoverable: True only for errors a retry can fix
        timestamp: UTC time the error was raised
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code if code else type(self).__name__.upper()
        self.details = dict(details) if details else {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        if self.details:
            text += " (" + ", ".join(f"{key}={value}" for key, value in self.details.items()) + ")"
        return text

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, code={self.code!r}, details={self.details!r})"

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for API responses and sync outcomes."""
        return {
            "error_type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
            "cause": None if self.cause is None else str(self.cause),
        }


# ============================================
# Local Errors (never retried)
# ============================================

class ConfigurationError(SyncioError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


class NotFoundError(SyncioError):
    """Raised when a group, user or addon record does not exist."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        message = f"{resource_type} not found"
        if resource_id:
            message = f"{resource_type} '{resource_id}' not found"

        details = kwargs.pop("details", {})
        details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message,
            code="NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConfirmationRequiredError(SyncioError):
    """Raised when a destructive plan (RemoveAll) is executed unconfirmed."""

    def __init__(
        self,
        user_id: str,
        message: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["user_id"] = user_id
        super().__init__(
            message or f"Sync for user '{user_id}' would remove every addon; confirmation required",
            code="CONFIRMATION_REQUIRED",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.user_id = user_id


class AlreadySyncingError(SyncioError):
    """Raised when a sync for the same user is already in flight."""

    def __init__(self, user_id: str, **kwargs):
        details = kwargs.pop("details", {})
        details["user_id"] = user_id
        super().__init__(
            f"A sync for user '{user_id}' is already running",
            code="ALREADY_SYNCING",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.user_id = user_id


# ============================================
# Authentication Errors
# ============================================

class AuthenticationError(SyncioError):
    """Base class for credential errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class AuthExpiredError(AuthenticationError):
    """Raised when a device code expired or a stored credential is invalid."""

    def __init__(self, message: str = "Stremio credential is invalid or expired", **kwargs):
        kwargs.setdefault("code", "AUTH_EXPIRED")
        super().__init__(message, **kwargs)


class IdentityMismatchError(AuthenticationError):
    """Raised when a credential is linked to a different account than expected.

    Attributes:
        expected: Identity the caller asked for
        actual: Identity the credential actually belongs to
    """

    def __init__(
        self,
        expected: str,
        actual: Optional[str],
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["expected"] = expected
        details["actual"] = actual
        super().__init__(
            f"Credential belongs to '{actual}', expected '{expected}'",
            code="IDENTITY_MISMATCH",
            details=details,
            **kwargs,
        )
        self.expected = expected
        self.actual = actual


# ============================================
# Remote API Errors
# ============================================

class RemoteError(SyncioError):
    """Base class for failures talking to the Stremio services.

    Attributes:
        status_code: HTTP status code, when there was a response
        endpoint: Remote method or path that was called
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if response_body:
            details["response_body"] = response_body[:500]

        kwargs.setdefault("code", f"REMOTE_ERROR_{status_code}" if status_code else "REMOTE_ERROR")

        super().__init__(message, details=details, **kwargs)
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = response_body


class TransientRemoteError(RemoteError):
    """Network failure, timeout or 5xx. Safe to retry."""

    def __init__(self, message: str, **kwargs):
        kwargs["recoverable"] = True
        kwargs.setdefault("code", "TRANSIENT_REMOTE_ERROR")
        super().__init__(message, **kwargs)


class NetworkError(TransientRemoteError):
    """Base class for transport-level errors."""


class ConnectionError(NetworkError):
    """Raised when connection to the server fails."""

    def __init__(
        self,
        message: str = "Failed to connect to server",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details=details,
            **kwargs,
        )


class TimeoutError(NetworkError):
    """Raised when a request times out."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="TIMEOUT_ERROR",
            details=details,
            **kwargs,
        )


class ServerError(TransientRemoteError):
    """Raised when the server returns a 5xx response."""

    def __init__(self, message: str = "Server error", **kwargs):
        kwargs.setdefault("status_code", 500)
        super().__init__(message, code="SERVER_ERROR", **kwargs)


class RateLimitError(TransientRemoteError):
    """Raised on HTTP 429.

    Attributes:
        retry_after: Seconds to wait before retrying (from Retry-After header)
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details=details,
            **kwargs,
        )
        self.retry_after = retry_after


class ValidationError(RemoteError):
    """Raised when the remote rejects a request or an addon manifest.

    Attributes:
        addon: Manifest URL of the addon that was rejected, if known
    """

    def __init__(
        self,
        message: str,
        addon: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if addon:
            details["addon"] = addon
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.addon = addon


class CircuitOpenError(RemoteError):
    """Raised when the circuit breaker is open and requests are rejected.

    Attributes:
        reset_at: When the circuit breaker will attempt to close
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open, requests rejected",
        reset_at: Optional[datetime] = None,
        failure_count: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if reset_at:
            details["reset_at"] = reset_at.isoformat()
        details["failure_count"] = failure_count

        super().__init__(
            message,
            code="CIRCUIT_OPEN",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.reset_at = reset_at
        self.failure_count = failure_count


# ============================================
# Exports
# ============================================

__all__ = [
    # Base
    "SyncioError",
    # Local
    "ConfigurationError",
    "NotFoundError",
    "ConfirmationRequiredError",
    "AlreadySyncingError",
    # Authentication
    "AuthenticationError",
    "AuthExpiredError",
    "IdentityMismatchError",
    # Remote
    "RemoteError",
    "TransientRemoteError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "ServerError",
    "RateLimitError",
    "ValidationError",
    "CircuitOpenError",
]
