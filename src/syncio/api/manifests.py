"""Addon manifest fetcher.

Addon manifests are plain JSON documents served by each addon. The
repositories store a copy, but records created before that was the case
(or whose stored copy is unreadable) need a live fetch.
"""
import asyncio
import logging
from typing import Any, Optional

import aiohttp

from .exceptions import ConnectionError, NetworkError, ServerError, TimeoutError, ValidationError

logger = logging.getLogger(__name__)


def fetchable_url(manifest_url: str) -> str:
    """Turn a stored manifest URL into something aiohttp can GET."""
    url = manifest_url.strip().lstrip("@")
    if url.lower().startswith("stremio://"):
        url = "https://" + url[len("stremio://"):]
    return url


class ManifestFetcher:
    """GET addon manifests over HTTP, reusing one session."""

    def __init__(self, request_timeout: float = 10.0, session: Optional[aiohttp.ClientSession] = None):
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ManifestFetcher":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None

    async def fetch(self, manifest_url: str) -> dict[str, Any]:
        """Fetch and decode one manifest.

        Raises:
            ValidationError: If the document is not a manifest object
            TransientRemoteError: On network errors, timeouts and 5xx
        """
        if not self._session:
            raise RuntimeError("ManifestFetcher must be used as async context manager")

        url = fetchable_url(manifest_url)
        try:
            async with self._session.get(url) as response:
                if response.status >= 500:
                    raise ServerError(f"Manifest host error ({response.status})", status_code=response.status, endpoint=url)
                if response.status >= 400:
                    raise ValidationError(
                        f"Manifest not available ({response.status})",
                        addon=manifest_url,
                        status_code=response.status,
                        endpoint=url,
                    )
                manifest = await response.json(content_type=None)
        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(f"Failed to connect to {url}", host=url, cause=e)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"Fetching {url} timed out", timeout_seconds=self.request_timeout, cause=e)
        except ValueError as e:
            raise ValidationError("Manifest is not JSON", addon=manifest_url, cause=e)
        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error fetching {url}: {e}", cause=e)

        if not isinstance(manifest, dict) or not manifest.get("id"):
            raise ValidationError("Document is not an addon manifest", addon=manifest_url, endpoint=url)
        logger.debug(f"Fetched manifest {manifest.get('id')} from {url}")
        return manifest
