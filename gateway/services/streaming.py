"""Proxy-stream relay of resolved audio URLs.

The upstream connection is opened and the first chunk read before the caller
builds its response, so any failure up to that point can still be reported
with a proper status code. Once bytes are flowing, an upstream failure can only
terminate the connection.
"""

from typing import AsyncIterator, Optional

import httpx

from gateway.config import settings
from gateway.services import logger
from gateway.utils.exceptions import UpstreamStreamError

# Upstream headers relayed verbatim to the client
RELAYED_HEADERS = ("content-length", "content-range")


class UpstreamStream:
    """An open upstream media response plus the client that owns it."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        chunks: AsyncIterator[bytes],
        first_chunk: bytes,
        video_id: str = "",
    ):
        self.client = client
        self.response = response
        self._chunks = chunks
        self._first_chunk = first_chunk
        self.video_id = video_id
        self.bytes_sent = 0
        self._closed = False

    @property
    def status_code(self) -> int:
        return self.response.status_code

    def headers(self) -> dict:
        """Response headers for the relayed stream."""
        headers = {"Accept-Ranges": "bytes"}
        if "content-encoding" not in self.response.headers:
            for name in RELAYED_HEADERS:
                if name in self.response.headers:
                    headers[name.title()] = self.response.headers[name]
        return headers

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield media bytes; always closes the upstream when done, failed or cancelled."""
        try:
            if self._first_chunk:
                self.bytes_sent += len(self._first_chunk)
                yield self._first_chunk
            async for chunk in self._chunks:
                self.bytes_sent += len(chunk)
                yield chunk
        except httpx.HTTPError as e:
            logger.error(
                f"Upstream failed mid-stream after {self.bytes_sent} bytes: {str(e)[:100]}",
                "stream",
                {"video_id": self.video_id, "bytes_sent": self.bytes_sent}
            )
            raise
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.response.aclose()
        await self.client.aclose()
        logger.debug(
            f"Upstream closed after {self.bytes_sent} bytes",
            "stream",
            {"video_id": self.video_id, "bytes_sent": self.bytes_sent}
        )


async def open_upstream(
    url: str,
    video_id: str = "",
    range_header: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UpstreamStream:
    """
    Open ``url`` for streaming and read its first chunk.

    Args:
        url: Resolved media URL
        video_id: Video id, for logging
        range_header: Client ``Range`` header to forward upstream
        transport: Optional httpx transport (tests)

    Raises:
        UpstreamStreamError: If the URL cannot be opened or upstream answers >= 400
    """
    client = httpx.AsyncClient(
        timeout=settings.STREAM_TIMEOUT_SECONDS,
        follow_redirects=True,
        transport=transport,
    )
    headers = {"Range": range_header} if range_header else {}
    response = None

    try:
        response = await client.send(client.build_request("GET", url, headers=headers), stream=True)
        if response.status_code >= 400:
            raise UpstreamStreamError(f"Upstream returned HTTP {response.status_code}")

        chunks = response.aiter_bytes(settings.STREAM_CHUNK_SIZE)
        try:
            first_chunk = await chunks.__anext__()
        except StopAsyncIteration:
            first_chunk = b""

    except Exception as e:
        if response is not None:
            await response.aclose()
        await client.aclose()
        logger.error(
            f"Could not open upstream stream: {str(e)[:200]}",
            "stream",
            {"video_id": video_id}
        )
        if isinstance(e, UpstreamStreamError):
            raise
        raise UpstreamStreamError(f"Stream error: {e}") from e

    logger.info(
        f"Streaming {video_id} (upstream HTTP {response.status_code})",
        "stream",
        {"video_id": video_id, "range": range_header}
    )
    return UpstreamStream(client, response, chunks, first_chunk, video_id)
