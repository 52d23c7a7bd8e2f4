"""
Outbound side of the proxy: one GET against an ArcGIS export URL.

Usage:
    client = ArcGISExportClient(timeout=10.0)
    image = await client.fetch(url)          # raises UpstreamError / UpstreamTimeout
    async for chunk in image.iter_body():    # relays without buffering the whole image
        ...
    await image.close()

`timeout` is a hard deadline covering name resolution, connect, the response
headers and the first body chunk; the request is cancelled when it passes.
The body is read lazily from the open connection, so a slow downstream reader
slows the upstream socket instead of growing memory.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import anyio
import httpx

from ags_proxy.errors import UpstreamError, UpstreamTimeout


log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass
class UpstreamImage:
    """
    A successful (HTTP 200, non-empty) upstream response still attached to its
    connection. `first_chunk` was read to prove the body is not empty.
    """
    status: int
    content_type: Optional[str]
    first_chunk: bytes
    rest: AsyncIterator[bytes]
    response: httpx.Response

    async def iter_body(self) -> AsyncIterator[bytes]:
        try:
            yield self.first_chunk
            async for chunk in self.rest:
                if chunk:
                    yield chunk
        finally:
            await self.close()

    async def close(self) -> None:
        # Safe to call more than once, and from a cancelled task (client disconnect)
        with anyio.CancelScope(shield=True):
            await self.response.aclose()


class ArcGISExportClient:
    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_S,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Params:
            timeout: seconds until the response headers and first body bytes must be in
            chunk_size: largest relayed body chunk, in bytes
            client: optional httpx.AsyncClient for connection reuse (or a mock transport)
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = float(timeout)
        self.chunk_size = int(chunk_size)
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        # per-read timeout as well, so a stalled body after the headers cannot hang
        self.client = client or httpx.AsyncClient(timeout=self.timeout)

    async def fetch(self, url: str) -> UpstreamImage:
        """
        GET `url` and return the streaming relay object.

        Raises:
            UpstreamTimeout: headers and first body bytes not in within `timeout`.
            UpstreamError: bad URL, connection failure, status != 200 or empty body.
        """
        r: Optional[httpx.Response] = None
        try:
            with anyio.fail_after(self.timeout):
                r = await self.client.send(self.client.build_request("GET", url), stream=True)
                log.info("Response from server: HTTP %s", r.status_code)
                if r.status_code != 200:
                    raise UpstreamError(f"upstream returned HTTP {r.status_code}")
                chunks = self._split(r)
                first = await anext(chunks, b"")
                if not first:
                    raise UpstreamError("upstream returned an empty body")
        except (TimeoutError, httpx.TimeoutException) as e:
            await self._discard(r)
            log.warning("ArcGIS export timed out after %.1fs: %s", self.timeout, url)
            raise UpstreamTimeout(f"timed out after {self.timeout}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            await self._discard(r)
            log.warning("ArcGIS export request failed: %s (%s)", e, url)
            raise UpstreamError(str(e)) from e
        except BaseException:
            await self._discard(r)
            raise

        return UpstreamImage(
            status=r.status_code,
            content_type=r.headers.get("content-type"),
            first_chunk=first,
            rest=chunks,
            response=r,
        )

    async def _split(self, r: httpx.Response) -> AsyncIterator[bytes]:
        # relay bytes as they arrive; aiter_bytes(n) would hold back a short first read
        async for data in r.aiter_bytes():
            for i in range(0, len(data), self.chunk_size):
                yield data[i:i + self.chunk_size]

    async def _discard(self, r: Optional[httpx.Response]) -> None:
        if r is not None:
            with anyio.CancelScope(shield=True):
                await r.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()
