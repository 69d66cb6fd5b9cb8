"""
HTTP transport for file servers exposing ``/api/resources``.

  POST /api/resources/<path>?override=true|false   body = file bytes
  POST /api/resources/<path>/                      create directory
"""

from __future__ import annotations

from typing import Callable, Optional
from urllib.parse import quote

import aiohttp

from config import CHUNK_SIZE
from errors import TransportError
from log import logger

from .base import Transport, read_chunks

RESOURCES_PATH = "/api/resources"
CONNECT_TIMEOUT = 30
READ_TIMEOUT = 300


class HttpTransport(Transport):
    """Uploads over HTTP with an aiohttp client session."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        chunk_size: int = CHUNK_SIZE,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.chunk_size = chunk_size
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"X-Auth": self.token} if self.token else None
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(
                    total=None, connect=CONNECT_TIMEOUT, sock_read=READ_TIMEOUT
                ),
            )
            self._owns_session = True
        return self._session

    def resource_url(self, path: str, is_dir: bool = False) -> str:
        """Absolute URL for a remote path. Directory URLs end with '/'."""
        url = self.base_url + RESOURCES_PATH + "/" + quote(path.strip("/"))
        if is_dir:
            url += "/"
        return url

    async def _check(self, resp: aiohttp.ClientResponse) -> None:
        if resp.status < 200 or resp.status >= 300:
            text = await resp.text()
            raise TransportError(resp.status, text.strip() or resp.reason or "request failed")

    async def upload_file(
        self, path: str, handle, overwrite: bool, on_progress: Callable[[int], None]
    ) -> None:
        chunk_size = self.chunk_size

        async def body():
            loaded = 0
            for chunk in read_chunks(handle, chunk_size):
                yield chunk
                loaded += len(chunk)
                on_progress(loaded)

        url = self.resource_url(path)
        logger.debug(f"POST {url} (override={overwrite})")
        async with self._get_session().post(
            url,
            params={"override": "true" if overwrite else "false"},
            headers={"Content-Type": "application/octet-stream"},
            data=body(),
        ) as resp:
            await self._check(resp)

    async def create_directory(self, path: str) -> None:
        url = self.resource_url(path, is_dir=True)
        logger.debug(f"POST {url}")
        async with self._get_session().post(url) as resp:
            await self._check(resp)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
