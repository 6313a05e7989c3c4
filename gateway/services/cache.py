"""Disk cache of downloaded audio, keyed by video id.

A file named ``<video_id>.<AUDIO_FORMAT>`` in DOWNLOADS_DIR means the video is
cached. Entries never expire. The downloader may choose its own extension, so
after a download the directory is scanned for a file starting with the video
id and that file is renamed to the canonical name.
"""

import asyncio
import time
from functools import lru_cache
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

import aiofiles.os

from gateway.config import settings
from gateway.services import logger
from gateway.utils.exceptions import DownloadFailedError

# Leftovers from an interrupted download never count as output
PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp", ".tmp")

Downloader = Callable[[str, Path], Awaitable[None]]


class AudioCache:
    """
    Download-once store for audio files.

    Usage:
        cache = AudioCache(Path("/tmp/downloads"), backend.download_audio)
        path = await cache.get_or_download("dQw4w9WgXcQ")
    """

    def __init__(self, directory: Path, downloader: Downloader, extension: str = "mp3"):
        self.directory = Path(directory)
        self.downloader = downloader
        self.extension = extension
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def canonical_path(self, video_id: str) -> Path:
        return self.directory / f"{video_id}.{self.extension}"

    async def lookup(self, video_id: str) -> Optional[Path]:
        """Return the cached file for ``video_id`` or None."""
        path = self.canonical_path(video_id)
        if await aiofiles.os.path.exists(path):
            return path
        return None

    async def get_or_download(self, video_id: str) -> Path:
        """
        Return the cached audio file, downloading it first on a miss.

        Concurrent calls for the same id share one download.

        Raises:
            DownloadFailedError: If the download produced no matching file
        """
        cached = await self.lookup(video_id)
        if cached:
            logger.debug(f"Cache hit: {cached.name}", "cache", {"video_id": video_id})
            return cached

        lock = self._locks.setdefault(video_id, asyncio.Lock())
        self._waiters[video_id] = self._waiters.get(video_id, 0) + 1
        try:
            async with lock:
                # Another request may have finished the download while we waited
                cached = await self.lookup(video_id)
                if cached:
                    return cached
                return await self._download(video_id)
        finally:
            self._waiters[video_id] -= 1
            if self._waiters[video_id] == 0:
                del self._waiters[video_id]
                del self._locks[video_id]

    async def _download(self, video_id: str) -> Path:
        canonical = self.canonical_path(video_id)
        start_time = time.time()
        logger.info(f"Cache miss, downloading {video_id}", "cache", {"video_id": video_id})

        await self.downloader(video_id, self.directory)

        actual = await self._find_output(video_id)
        if actual is None:
            logger.error(
                f"Download produced no file for {video_id}",
                "cache",
                {"video_id": video_id, "directory": str(self.directory)}
            )
            raise DownloadFailedError(f"Download failed: no output file for {video_id}")

        if actual != canonical:
            await aiofiles.os.rename(actual, canonical)
            logger.debug(f"Renamed {actual.name} -> {canonical.name}", "cache", {"video_id": video_id})

        logger.success(
            f"Cached {canonical.name} in {time.time() - start_time:.1f}s",
            "cache",
            {"video_id": video_id, "path": str(canonical)}
        )
        return canonical

    async def _find_output(self, video_id: str) -> Optional[Path]:
        """Find the downloaded file by filename prefix, preferring the canonical name."""
        canonical = self.canonical_path(video_id)
        names = sorted(await aiofiles.os.listdir(self.directory))
        matches = [
            name for name in names
            if name.startswith(video_id) and not name.endswith(PARTIAL_SUFFIXES)
        ]
        if not matches:
            return None
        if canonical.name in matches:
            return canonical
        return self.directory / matches[0]


@lru_cache()
def get_audio_cache() -> AudioCache:
    """Get the process-wide audio cache backed by the configured backend's downloader."""
    from gateway.services.resolver import get_engine

    backend = get_engine().session.backend
    return AudioCache(
        Path(settings.DOWNLOADS_DIR).resolve(),
        backend.download_audio,
        extension=settings.AUDIO_FORMAT,
    )
