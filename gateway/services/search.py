"""YouTube search through yt-dlp's ``ytsearch`` pseudo-URL."""

import asyncio
import time
from typing import List, Optional

import yt_dlp

from gateway.config import settings
from gateway.models.schemas import SearchResult
from gateway.services import logger
from gateway.services.youtube import base_ydl_opts, run_blocking
from gateway.utils.exceptions import SearchError

THUMBNAIL_URL = "https://img.youtube.com/vi/{}/hqdefault.jpg"


def format_duration(seconds: Optional[float]) -> Optional[str]:
    """Render seconds as ``M:SS`` or ``H:MM:SS``."""
    if seconds is None:
        return None
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def _best_thumbnail(entry: dict) -> Optional[str]:
    # yt-dlp orders thumbnails worst to best
    for thumb in reversed(entry.get("thumbnails") or []):
        if isinstance(thumb, dict) and thumb.get("url"):
            return thumb["url"]
    return entry.get("thumbnail")


def to_search_result(entry: dict) -> SearchResult:
    """Map a flat ytsearch entry to a SearchResult, filling platform defaults."""
    video_id = entry["id"]
    return SearchResult(
        id=video_id,
        title=entry.get("title") or "",
        artist=entry.get("channel") or entry.get("uploader") or "Unknown",
        thumbnail=_best_thumbnail(entry) or THUMBNAIL_URL.format(video_id),
        duration=format_duration(entry.get("duration")),
        author_id=entry.get("channel_id") or "",
    )


def _is_video_entry(entry) -> bool:
    if not isinstance(entry, dict) or not entry.get("id"):
        return False
    # Channels and playlists come back under the YoutubeTab extractor
    return entry.get("ie_key") in (None, "Youtube")


async def search(query: str, limit: Optional[int] = None) -> List[SearchResult]:
    """
    Search YouTube videos.

    Args:
        query: Free-text query; a blank query returns no results
        limit: Maximum results (default SEARCH_LIMIT)

    Returns:
        List of SearchResult, videos only

    Raises:
        SearchError: If yt-dlp fails or times out
    """
    query = (query or "").strip()
    if not query:
        return []

    limit = limit or settings.SEARCH_LIMIT
    ydl_opts = {
        **base_ydl_opts("search", settings.PROXY_URL),
        "skip_download": True,
        "extract_flat": "in_playlist",
    }
    start_time = time.time()

    def _blocking_search():
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            return ydl.extract_info(f"ytsearch{limit}:{query}", download=False)

    try:
        result = await run_blocking(_blocking_search, timeout=settings.SEARCH_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error(f"Search timed out: {query[:50]}", "search")
        raise SearchError(f"Search timed out after {settings.SEARCH_TIMEOUT_SECONDS}s")
    except yt_dlp.utils.DownloadError as e:
        logger.error(f"Search failed: {str(e)[:200]}", "search", {"query": query[:100]})
        raise SearchError(str(e))

    items = [to_search_result(e) for e in (result or {}).get("entries") or [] if _is_video_entry(e)]

    logger.info(
        f"Search returned {len(items)} videos in {time.time() - start_time:.2f}s",
        "search",
        {"query": query[:100], "count": len(items)}
    )
    return items
