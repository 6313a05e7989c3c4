"""Lazily-initialized platform client session.

The session owns exactly one platform client handle (for the yt-dlp backend a
``YoutubeDL`` instance). The handle is created on first use; concurrent first
callers share a single in-flight initialization and its outcome. A failed
initialization leaves the session empty so the next request retries.
"""

import asyncio
import inspect
import time
from typing import Any, List, Optional, Protocol

from gateway.services import logger
from gateway.services.formats import StreamFormat
from gateway.utils.exceptions import (
    BackendUnavailableError,
    GatewayError,
    MetadataFetchError,
    UrlUnresolvableError,
)


class PlatformBackend(Protocol):
    """Capability set every platform backend provides."""

    name: str

    async def create_client(self) -> Any:
        """Create the platform client handle (the session's player state)."""
        ...

    async def fetch_formats(self, client: Any, video_id: str) -> List[StreamFormat]:
        """Fetch the raw stream formats for a video using ``client``."""
        ...


class BackendSession:
    """
    Single-flight, retry-on-failure holder for a platform client.

    Usage:
        session = BackendSession(backend)
        formats = await session.fetch_streaming_metadata("dQw4w9WgXcQ")
        url = await session.decipher(formats[0])
    """

    def __init__(self, backend: PlatformBackend, init_timeout: Optional[float] = None):
        self.backend = backend
        self.init_timeout = init_timeout
        self._client: Any = None
        self._init_task: Optional[asyncio.Task] = None
        self.init_attempts = 0

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> Any:
        return self._client

    async def ensure_initialized(self) -> Any:
        """
        Return the platform client, creating it on first use.

        Raises:
            BackendUnavailableError: If the client could not be created
        """
        if self._client is not None:
            return self._client

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._create_client())
            self._init_task.add_done_callback(self._forget_failed_init)
        task = self._init_task

        try:
            # Shielded so a cancelled waiter does not cancel the shared attempt
            return await asyncio.shield(task)
        except Exception as e:
            if self._init_task is task:
                self._init_task = None
            if isinstance(e, BackendUnavailableError):
                raise
            raise BackendUnavailableError(f"Backend session failed to initialize: {e}") from e

    def _forget_failed_init(self, task: asyncio.Task) -> None:
        # Runs even when every waiter was cancelled, so a failure is never cached
        if task.cancelled() or task.exception() is not None:
            if self._init_task is task:
                self._init_task = None

    async def _create_client(self) -> Any:
        self.init_attempts += 1
        start_time = time.time()
        logger.info(
            f"Initializing {self.backend.name} session",
            "session",
            {"attempt": self.init_attempts}
        )

        try:
            if self.init_timeout:
                client = await asyncio.wait_for(self.backend.create_client(), timeout=self.init_timeout)
            else:
                client = await self.backend.create_client()
        except asyncio.TimeoutError:
            logger.error(
                f"Session initialization timed out after {self.init_timeout}s",
                "session",
                {"attempt": self.init_attempts}
            )
            raise BackendUnavailableError(f"Backend session timed out after {self.init_timeout}s")
        except Exception as e:
            logger.error(
                f"Session initialization failed: {str(e)[:200]}",
                "session",
                {"attempt": self.init_attempts, "error_type": type(e).__name__}
            )
            raise

        self._client = client
        logger.success(
            f"{self.backend.name} session ready in {time.time() - start_time:.2f}s",
            "session"
        )
        return client

    async def fetch_streaming_metadata(self, video_id: str) -> List[StreamFormat]:
        """
        Fetch the stream formats for a video.

        Raises:
            BackendUnavailableError: If the session cannot be established
            MetadataFetchError: If the platform rejects the id or returns nothing
        """
        client = await self.ensure_initialized()

        try:
            formats = await self.backend.fetch_formats(client, video_id)
        except GatewayError:
            raise
        except Exception as e:
            raise MetadataFetchError(f"Failed to fetch streaming metadata for {video_id}: {e}") from e

        if not formats:
            raise MetadataFetchError(f"No streaming data returned for {video_id}")

        return formats

    async def decipher(self, fmt: StreamFormat) -> str:
        """
        Turn an obfuscated format into a fetchable URL using this session's client.

        Raises:
            UrlUnresolvableError: If the format cannot be deciphered
        """
        if fmt.decipher is None:
            if fmt.url:
                return fmt.url
            raise UrlUnresolvableError(f"Format {fmt.format_id or '?'} has no URL and no decipher")

        client = await self.ensure_initialized()
        try:
            url = fmt.decipher(client)
            if inspect.isawaitable(url):
                url = await url
        except GatewayError:
            raise
        except Exception as e:
            raise UrlUnresolvableError(f"Decipher failed for format {fmt.format_id or '?'}: {e}") from e

        if not url:
            raise UrlUnresolvableError(f"Decipher returned no URL for format {fmt.format_id or '?'}")
        return url
