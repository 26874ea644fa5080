#!/usr/bin/env python3
"""Async HTTP client for the Stremio addon collection API.

The Stremio API is RPC-style: every call is a ``POST`` to
``{base}/api/<method>`` with a JSON body carrying the method ``type`` and
the user's ``authKey``. Responses are either ``{"result": ...}`` or
``{"error": {"code": int, "message": str}}`` (frequently with HTTP 200).

This client knows HOW to talk to Stremio, not WHAT to sync. It has no
knowledge of groups, overrides or reconciliation; that belongs in the
sync use cases that compose it through the collection adapter.

    - Connection pooling via shared aiohttp session
    - Circuit breaker for resilience against API outages
    - Typed exceptions for every failure mode (see exceptions.py)
    - Repair of corrupted collections (``addons: null``)

Usage:
    async with StremioClient() as client:
        entries = await client.addon_collection_get(auth_key)
        await client.addon_collection_set(auth_key, entries)
        user = await client.get_user(auth_key)

Retries are NOT performed here; the sync executor owns attempts, backoff
and per-attempt timeouts.
"""
import asyncio
import logging
import os
import re
from typing import Any, Optional

import aiohttp

from .exceptions import (
    AuthExpiredError,
    ConnectionError,
    NetworkError,
    RateLimitError,
    RemoteError,
    ServerError,
    TimeoutError,
    ValidationError,
)
from .resilience import CircuitBreaker

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.strem.io"

# Stremio error code for an unknown or revoked authKey ("session does not exist")
SESSION_NOT_FOUND_CODE = 1

_ADDON_INDEX_PATTERN = re.compile(r"addons?\s*\[\s*(\d+)\s*\]|addon\s+(?:at\s+)?(?:index\s+)?#?(\d+)", re.IGNORECASE)


def identify_rejected_addon(message: str, entries: list[dict]) -> Optional[str]:
    """Find which submitted collection entry a remote error message refers to.

    The remote either echoes the offending transport URL or the index of
    the entry in the submitted list. Returns the transport URL, or None.
    """
    if not message:
        return None
    urls = [e.get("transportUrl") if isinstance(e, dict) else None for e in entries]
    lowered = message.lower()
    for url in urls:
        if url and url.lower() in lowered:
            return url
    match = _ADDON_INDEX_PATTERN.search(message)
    if match:
        index = int(match.group(1) or match.group(2))
        if 0 <= index < len(urls):
            return urls[index]
    return None


class StremioClient:
    """Async client for Stremio account and addon collection calls.

    Designed to be used as an async context manager:

        async with StremioClient() as client:
            entries = await client.addon_collection_get(auth_key)

    Attributes:
        base_url: API base URL (e.g., "https://api.strem.io")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        request_timeout: float = 30.0,
        enable_circuit_breaker: bool = True,
        circuit_failure_threshold: int = 5,
        circuit_timeout: float = 60.0,
    ):
        """Initialize the StremioClient.

        Args:
            base_url: API base URL. Defaults to STREMIO_API_URL or the public API.
            request_timeout: Total timeout for a single HTTP request
            enable_circuit_breaker: Enable circuit breaker for resilience
            circuit_failure_threshold: Failures before circuit opens
            circuit_timeout: Seconds before circuit attempts to close
        """
        self.base_url = (base_url or os.getenv("STREMIO_API_URL", DEFAULT_API_URL)).rstrip("/")
        self.request_timeout = request_timeout

        # Session is created in __aenter__, closed in __aexit__
        self._session: Optional[aiohttp.ClientSession] = None

        self._circuit_breaker: Optional[CircuitBreaker] = None
        if enable_circuit_breaker:
            self._circuit_breaker = CircuitBreaker(
                failure_threshold=circuit_failure_threshold,
                timeout=circuit_timeout,
                name="stremio_api",
            )

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "StremioClient":
        """Enter async context: create the HTTP session."""
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(
                limit=20,
                limit_per_host=20,
            ),
            timeout=aiohttp.ClientTimeout(
                total=self.request_timeout,
                connect=10,
            ),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context: close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    async def _request(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Make a single API call and return the parsed JSON envelope.

        Raises:
            RemoteError: If response status is not 2xx
            RuntimeError: If called outside of async context manager
            ConnectionError: If connection to server fails
            TimeoutError: If request times out
        """
        if not self._session:
            raise RuntimeError(
                "StremioClient must be used as async context manager: "
                "async with StremioClient() as client:"
            )

        url = f"{self.base_url}/api/{method}"

        try:
            async with self._session.post(url, json=payload) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise self._create_http_error(
                        status=response.status,
                        endpoint=method,
                        response_body=error_text,
                        retry_after=response.headers.get("Retry-After"),
                    )
                return await response.json(content_type=None)

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.base_url}",
                host=self.base_url,
                endpoint=method,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Request to {method} timed out",
                timeout_seconds=self.request_timeout,
                endpoint=method,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {method}: {e}",
                endpoint=method,
                cause=e,
            )

    def _create_http_error(
        self,
        status: int,
        endpoint: str,
        response_body: str,
        retry_after: Optional[str] = None,
    ) -> RemoteError:
        """Create the appropriate RemoteError subclass for an HTTP status."""
        if status in (401, 403):
            return AuthExpiredError(
                "Stremio rejected the credential",
                details={"endpoint": endpoint, "status_code": status},
            )

        if status == 429:
            seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
            return RateLimitError(
                f"Rate limit exceeded for {endpoint}",
                retry_after=seconds,
                endpoint=endpoint,
                response_body=response_body,
            )

        if status in (400, 422):
            return ValidationError(
                f"Stremio rejected {endpoint}",
                status_code=status,
                endpoint=endpoint,
                response_body=response_body,
            )

        if status >= 500:
            return ServerError(
                f"Server error ({status}) for {endpoint}",
                status_code=status,
                endpoint=endpoint,
                response_body=response_body,
            )

        return RemoteError(
            f"{endpoint} failed",
            status_code=status,
            endpoint=endpoint,
            response_body=response_body,
        )

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        """Call an API method through the circuit breaker and unwrap ``result``."""
        if self._circuit_breaker:
            body = await self._circuit_breaker.call(self._request, method, payload)
        else:
            body = await self._request(method, payload)

        if not isinstance(body, dict):
            raise ServerError(f"Unexpected response from {method}", endpoint=method, status_code=200)

        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            if code == SESSION_NOT_FOUND_CODE or "session does not exist" in message.lower():
                raise AuthExpiredError(
                    "Stremio session does not exist",
                    details={"endpoint": method, "remote_code": code},
                )
            raise ValidationError(
                message or f"{method} failed",
                endpoint=method,
                details={"remote_code": code},
            )

        return body.get("result")

    @property
    def circuit_status(self) -> Optional[dict[str, Any]]:
        """Get circuit breaker status for monitoring."""
        if self._circuit_breaker:
            return self._circuit_breaker.get_status()
        return None

    # ----------------------------------------
    # API Methods
    # ----------------------------------------

    async def addon_collection_get(self, auth_key: str, repair: bool = True) -> list[dict]:
        """Fetch the account's ordered addon collection.

        Args:
            auth_key: Stremio authKey of the account
            repair: Replace a corrupted (``addons: null``) collection with an
                empty one and read it again

        Returns:
            List of raw collection entries (transportUrl, transportName, manifest)
        """
        result = await self._call(
            "addonCollectionGet",
            {"type": "AddonCollectionGet", "authKey": auth_key, "update": True},
        )
        addons = (result or {}).get("addons")

        if addons is None:
            if not repair:
                return []
            logger.warning("Stremio returned a corrupted addon collection (addons=null), repairing")
            await self.addon_collection_set(auth_key, [])
            return await self.addon_collection_get(auth_key, repair=False)

        return list(addons)

    async def addon_collection_set(self, auth_key: str, entries: list[dict]) -> None:
        """Replace the account's whole addon collection with ``entries``.

        Raises:
            ValidationError: With ``addon`` set when the rejected entry is known
        """
        try:
            result = await self._call(
                "addonCollectionSet",
                {"type": "AddonCollectionSet", "authKey": auth_key, "addons": entries},
            )
        except ValidationError as e:
            addon = identify_rejected_addon(e.message, entries)
            if addon:
                raise ValidationError(
                    e.message,
                    addon=addon,
                    endpoint="addonCollectionSet",
                    status_code=e.status_code,
                    cause=e,
                ) from e
            raise

        if isinstance(result, dict) and result.get("success") is False:
            raise ValidationError("Stremio did not accept the addon collection", endpoint="addonCollectionSet")

    async def get_user(self, auth_key: str) -> dict[str, Any]:
        """Fetch the account profile (``_id``, ``email``, ...) behind a credential."""
        result = await self._call("getUser", {"type": "GetUser", "authKey": auth_key})
        if not isinstance(result, dict):
            raise AuthExpiredError("Stremio returned no user for this credential")
        return result
