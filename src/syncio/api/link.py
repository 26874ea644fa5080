"""Async HTTP client for the Stremio device link API.

The link API backs the "open this link and approve" login: it hands out a
short code/link pair and, once the user approves it from a signed-in
Stremio session, returns that account's authKey when the code is read.

    create:  GET {base}/api/v2/create?type=Create
             -> {"result": {"success": true, "code": "...", "link": "..."}}
    read:    GET {base}/api/v2/read?type=Read&code=...
             -> {"result": {"success": true, "authKey": "..."}}
             -> {"error": {"code": 101, "message": "..."}}   (still pending)

Usage:
    async with StremioLinkClient() as link:
        device_code = await link.create_device_code()
        status = await link.read_device_code(device_code.code)
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import aiohttp

from .exceptions import ConnectionError, NetworkError, ServerError, TimeoutError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_LINK_URL = "https://link.stremio.com"

# Remote error code meaning "the user has not approved the code yet"
PENDING_CODE = 101


class LinkReadState(str, Enum):
    """Outcome of reading a device code."""

    PENDING = "pending"
    CREDENTIAL = "credential"
    ERROR = "error"


@dataclass(frozen=True)
class DeviceCode:
    """A freshly created code/link pair."""

    code: str
    link: str


@dataclass(frozen=True)
class LinkReadResult:
    """Result of one poll of the device link API."""

    state: LinkReadState
    auth_key: Optional[str] = None
    error_code: Optional[int] = None
    message: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.state == LinkReadState.PENDING


class StremioLinkClient:
    """Async client for creating and reading Stremio device codes."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        host: Optional[str] = None,
        request_timeout: float = 10.0,
    ):
        """Initialize the link client.

        Args:
            base_url: Link API base. Defaults to STREMIO_LINK_URL or the public API.
            host: Value for the X-Requested-With header
            request_timeout: Total timeout for a single HTTP request
        """
        self.base_url = (base_url or os.getenv("STREMIO_LINK_URL", DEFAULT_LINK_URL)).rstrip("/")
        self.host = host or os.getenv("STREMIO_LINK_HOST", "syncio")
        self.request_timeout = request_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "StremioLinkClient":
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.request_timeout, connect=5),
            headers={"X-Requested-With": self.host},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _get(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        if not self._session:
            raise RuntimeError(
                "StremioLinkClient must be used as async context manager: "
                "async with StremioLinkClient() as link:"
            )

        url = f"{self.base_url}{path}"
        try:
            async with self._session.get(url, params=params) as response:
                if response.status >= 500:
                    raise ServerError(
                        f"Link API error ({response.status})",
                        status_code=response.status,
                        endpoint=path,
                    )
                if response.status >= 400:
                    raise ValidationError(
                        f"Link API rejected {path}",
                        status_code=response.status,
                        endpoint=path,
                        response_body=await response.text(),
                    )
                return await response.json(content_type=None)

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.base_url}",
                host=self.base_url,
                endpoint=path,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Request to {path} timed out",
                timeout_seconds=self.request_timeout,
                endpoint=path,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error during {path}: {e}", endpoint=path, cause=e)

    async def create_device_code(self) -> DeviceCode:
        """Create a new code/link pair.

        Raises:
            ValidationError: If the remote answered without a usable code
        """
        body = await self._get("/api/v2/create", {"type": "Create"})
        result = body.get("result") or {}
        if not result.get("success") or not result.get("code") or not result.get("link"):
            error = body.get("error") or {}
            raise ValidationError(
                error.get("message") or "Link API did not return a code",
                endpoint="/api/v2/create",
                details={"remote_code": error.get("code")},
            )
        logger.info("Created Stremio device code")
        return DeviceCode(code=result["code"], link=result["link"])

    async def read_device_code(self, code: str) -> LinkReadResult:
        """Read the status of a device code."""
        body = await self._get("/api/v2/read", {"type": "Read", "code": code})

        error = body.get("error")
        if error:
            error_code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            if error_code == PENDING_CODE:
                return LinkReadResult(state=LinkReadState.PENDING, error_code=error_code, message=message)
            return LinkReadResult(state=LinkReadState.ERROR, error_code=error_code, message=message)

        result = body.get("result") or {}
        if result.get("success") and result.get("authKey"):
            return LinkReadResult(state=LinkReadState.CREDENTIAL, auth_key=result["authKey"])

        return LinkReadResult(state=LinkReadState.PENDING)
