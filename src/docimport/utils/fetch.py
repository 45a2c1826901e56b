"""Asset byte fetching and URL existence checks.

Uses a shared ``httpx.AsyncClient`` for remote URLs and reads ``file://`` URLs
from disk in a worker thread.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx

from docimport.core.exceptions import AssetError

from .retry import retry_on_failure

logger = logging.getLogger(__name__)

URL_EXISTS_MAX_TRIES = 5
URL_EXISTS_RETRY_DELAY = 1.0  # seconds
DOWNLOAD_CHUNK_SIZE = 256 * 1024

_HTTP_RE = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class HashedBuffer:
    buffer: bytes
    sha1hash: str


class AssetFetcher:
    """Downloads asset bytes and probes asset URLs.

    Args:
        client: HTTP client used for ``http(s)`` URLs.
        retry_delay: Seconds to wait between existence-check attempts.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        retry_delay: float = URL_EXISTS_RETRY_DELAY,
    ) -> None:
        self._client = client
        self._retry_delay = retry_delay

    async def get_hashed_buffer(self, uri: str) -> HashedBuffer:
        """Download ``uri`` and compute its SHA-1, retrying transient failures."""
        return await retry_on_failure(lambda: self._get_hashed_buffer(uri))

    async def _get_hashed_buffer(self, uri: str) -> HashedBuffer:
        hasher = hashlib.sha1(usedforsecurity=False)
        if _HTTP_RE.match(uri):
            chunks: list[bytes] = []
            async with self._client.stream("GET", uri) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                    chunks.append(chunk)
                    hasher.update(chunk)
            data = b"".join(chunks)
        else:
            data = await asyncio.to_thread(_read_local_uri, uri)
            hasher.update(data)

        return HashedBuffer(buffer=data, sha1hash=hasher.hexdigest())

    async def url_exists(self, url: str) -> bool:
        """HEAD ``url``; True only for a 200 response.

        Transport errors are retried; the last one is raised once retries run out.
        """
        attempt = 1
        while True:
            try:
                response = await self._client.head(url)
                return response.status_code == 200
            except httpx.HTTPError as e:
                logger.debug("HEAD %s failed (attempt #%d): %s", url, attempt, e)
                if attempt >= URL_EXISTS_MAX_TRIES:
                    raise
            attempt += 1
            await asyncio.sleep(self._retry_delay)


def _read_local_uri(uri: str) -> bytes:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise AssetError(
            f'Error while fetching asset from "{uri}":\nUnsupported URL scheme "{parsed.scheme}"',
            url=uri,
        )
    path = Path(url2pathname(parsed.path))
    try:
        return path.read_bytes()
    except OSError as e:
        raise AssetError(f'Error while fetching asset from "{uri}":\n{e}', url=uri) from e


def create_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=30.0, follow_redirects=True)


__all__ = ["AssetFetcher", "HashedBuffer", "create_http_client"]
