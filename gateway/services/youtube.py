"""yt-dlp platform backends.

Two interchangeable backends implement the PlatformBackend capability set:

ytdlp (default)
    - Uses the yt-dlp library in-process
    - The session client is one long-lived ``YoutubeDL`` instance, so player
      JS and signature functions are fetched once and reused across requests
    - Blocking calls run on a dedicated thread pool

ytdlp-cli
    - Shells out to the yt-dlp executable (``yt-dlp -J``) per request
    - The session client is the resolved executable path
    - Useful when the library cannot be upgraded in-process

Both also provide ``download_audio`` for the download-to-file variant, which
extracts audio to mp3 with ffmpeg and leaves ``<video_id>.<ext>`` in the
target directory.
"""

import asyncio
import json
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, List, Optional

import yt_dlp

from gateway.config import settings
from gateway.services import logger
from gateway.services.formats import StreamFormat
from gateway.utils.exceptions import (
    BackendUnavailableError,
    DownloadFailedError,
    MetadataFetchError,
)

WATCH_URL = "https://www.youtube.com/watch?v={}"

# Formats yt-dlp is asked to select while extracting. The full format list is
# returned regardless; selection happens in select_best_audio.
METADATA_FORMAT = "bestaudio/best"
DOWNLOAD_FORMAT = "bestaudio/best"

# Thread pool for blocking yt-dlp calls
_ytdlp_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="ytdlp")


async def run_blocking(func: Callable[[], Any], timeout: Optional[float] = None) -> Any:
    """Run a blocking callable on the yt-dlp thread pool with an optional timeout."""
    loop = asyncio.get_event_loop()
    task = loop.run_in_executor(_ytdlp_executor, func)
    if timeout:
        return await asyncio.wait_for(task, timeout=timeout)
    return await task


def base_ydl_opts(context: str, proxy_url: Optional[str] = None) -> dict:
    """Options shared by every YoutubeDL instance we create."""
    opts = {
        "quiet": True,
        "no_warnings": True,
        "nocheckcertificate": True,
        "noplaylist": True,
        "socket_timeout": 30,
        "logger": logger.YtdlpLogger(context),
    }
    if proxy_url:
        opts["proxy"] = proxy_url
    return opts


def _is_bot_detection_error(error_msg: str) -> bool:
    """Check if the error is a bot detection error."""
    error_lower = error_msg.lower()
    return "confirm you're not a bot" in error_lower or "confirm your not a bot" in error_lower


def _classify_error(error_msg: str) -> MetadataFetchError:
    """
    Map a yt-dlp failure message onto a MetadataFetchError.

    Bot detection and rate limiting are transient and flagged retryable; an
    unavailable, private or removed video is not.
    """
    error_lower = error_msg.lower()
    retryable = (
        _is_bot_detection_error(error_msg)
        or "429" in error_msg
        or "timed out" in error_lower
        or "temporarily" in error_lower
    )
    return MetadataFetchError(error_msg.strip() or "yt-dlp returned an error", retryable=retryable)


# =============================================================================
# RAW FORMAT MAPPING
# =============================================================================

def mime_type_for(raw: dict) -> str:
    """Derive a MIME type for a yt-dlp format dict from its codecs."""
    ext = raw.get("ext") or "unknown"
    vcodec = raw.get("vcodec")
    acodec = raw.get("acodec")

    if vcodec == "none" and acodec not in (None, "none"):
        return f"audio/{ext}"
    if raw.get("resolution") == "audio only":
        return f"audio/{ext}"
    if vcodec not in (None, "none"):
        return f"video/{ext}"
    return f"application/{ext}"


def format_from_raw(raw: dict, decipher_factory: Optional[Callable[[dict], Callable]] = None) -> StreamFormat:
    """
    Build a StreamFormat from a yt-dlp format dict.

    Formats without a direct ``url`` but with a DASH base URL or a manifest get
    a decipher capability from ``decipher_factory``.
    """
    url = raw.get("url")
    decipher = None
    if not url and decipher_factory and (raw.get("fragment_base_url") or raw.get("manifest_url")):
        decipher = decipher_factory(raw)

    return StreamFormat(
        mime_type=mime_type_for(raw),
        bitrate=raw.get("abr") or raw.get("tbr"),
        url=url,
        decipher=decipher,
        format_id=raw.get("format_id"),
        ext=raw.get("ext"),
    )


def formats_from_info(info: Optional[dict], decipher_factory: Optional[Callable[[dict], Callable]] = None) -> List[StreamFormat]:
    """Map an extract_info result onto StreamFormats (empty when there is no streaming data)."""
    if not info:
        return []
    raw_formats = info.get("formats")
    if not raw_formats:
        # Single-format extractions put the URL on the info dict itself
        raw_formats = [info] if info.get("url") else []
    return [format_from_raw(raw, decipher_factory) for raw in raw_formats if isinstance(raw, dict)]


def _static_decipher(raw: dict) -> Callable[[Any], str]:
    """Decipher that needs no session state: take the DASH base URL or manifest."""
    def _decipher(_client: Any) -> str:
        return raw.get("fragment_base_url") or raw.get("manifest_url")
    return _decipher


# =============================================================================
# BACKEND: IN-PROCESS yt-dlp
# =============================================================================

class YtdlpBackend:
    """
    Platform backend that keeps one YoutubeDL instance as its session.

    YoutubeDL is not thread-safe, so every call on the shared instance holds
    ``_client_lock``. Extractions for different videos therefore run one at a
    time; downloads use their own instances and are not serialized.
    """

    name = "yt-dlp"

    def __init__(
        self,
        proxy_url: Optional[str] = None,
        resolve_timeout: Optional[float] = None,
        download_timeout: Optional[float] = None,
    ):
        self.proxy_url = proxy_url
        self.resolve_timeout = resolve_timeout
        self.download_timeout = download_timeout
        self._client_lock = threading.Lock()

    async def create_client(self) -> yt_dlp.YoutubeDL:
        opts = {
            **base_ydl_opts("session", self.proxy_url),
            "skip_download": True,
            "format": METADATA_FORMAT,
        }

        def _blocking_create():
            ydl = yt_dlp.YoutubeDL(opts)
            # Fail here rather than on the first request if the extractor is missing
            ydl.get_info_extractor("Youtube")
            return ydl

        client = await run_blocking(_blocking_create)
        logger.info(f"yt-dlp version: {yt_dlp.version.__version__}", "session")
        return client

    async def fetch_formats(self, client: yt_dlp.YoutubeDL, video_id: str) -> List[StreamFormat]:
        url = WATCH_URL.format(video_id)
        start_time = time.time()

        def _blocking_extract():
            with self._client_lock:
                return client.extract_info(url, download=False)

        try:
            info = await run_blocking(_blocking_extract, timeout=self.resolve_timeout)
        except asyncio.TimeoutError:
            raise MetadataFetchError(
                f"Metadata extraction timed out after {self.resolve_timeout}s",
                retryable=True,
            )
        except yt_dlp.utils.DownloadError as e:
            raise _classify_error(str(e))

        formats = formats_from_info(info, self._session_decipher)
        logger.debug(
            f"Extracted {len(formats)} formats in {time.time() - start_time:.2f}s",
            "ytdlp",
            {"video_id": video_id, "title": ((info or {}).get("title") or "Unknown")[:50]}
        )
        return formats

    def _session_decipher(self, raw: dict) -> Callable[[yt_dlp.YoutubeDL], Any]:
        """
        Decipher bound to the session: a DASH base URL is used directly, a
        manifest is opened through the session's own network stack (cookies,
        proxy) and its final redirected URL returned.
        """
        async def _decipher(client: yt_dlp.YoutubeDL) -> str:
            if raw.get("fragment_base_url"):
                return raw["fragment_base_url"]

            def _blocking_open():
                with self._client_lock, client.urlopen(raw["manifest_url"]) as response:
                    return response.url

            return await run_blocking(_blocking_open, timeout=self.resolve_timeout)

        return _decipher

    async def download_audio(self, video_id: str, output_dir: Path) -> None:
        """Download and transcode audio to ``<output_dir>/<video_id>.<AUDIO_FORMAT>``."""
        url = WATCH_URL.format(video_id)
        ydl_opts = {
            **base_ydl_opts(video_id, self.proxy_url),
            "format": DOWNLOAD_FORMAT,
            "outtmpl": str(Path(output_dir) / f"{video_id}.%(ext)s"),
            "postprocessors": [{
                "key": "FFmpegExtractAudio",
                "preferredcodec": settings.AUDIO_FORMAT,
                "preferredquality": settings.AUDIO_QUALITY,
            }],
        }

        def _blocking_download():
            with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                ydl.download([url])

        try:
            await run_blocking(_blocking_download, timeout=self.download_timeout)
        except asyncio.TimeoutError:
            raise DownloadFailedError(f"Download timed out after {self.download_timeout}s")
        except yt_dlp.utils.DownloadError as e:
            raise DownloadFailedError(str(e))


# =============================================================================
# BACKEND: EXTERNAL yt-dlp EXECUTABLE
# =============================================================================

class YtdlpCliBackend:
    """Platform backend that runs the yt-dlp executable per request."""

    name = "yt-dlp-cli"

    def __init__(
        self,
        binary: str = "yt-dlp",
        proxy_url: Optional[str] = None,
        resolve_timeout: Optional[float] = None,
        download_timeout: Optional[float] = None,
    ):
        self.binary = binary
        self.proxy_url = proxy_url
        self.resolve_timeout = resolve_timeout
        self.download_timeout = download_timeout

    def _common_args(self) -> List[str]:
        args = ["--no-warnings", "--no-check-certificates", "--no-playlist"]
        if self.proxy_url:
            args += ["--proxy", self.proxy_url]
        return args

    async def _run(self, args: List[str], timeout: Optional[float]) -> tuple:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            if timeout:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            else:
                stdout, stderr = await proc.communicate()
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise
        return proc.returncode, stdout, stderr.decode(errors="replace")

    async def create_client(self) -> str:
        path = shutil.which(self.binary)
        if not path:
            raise BackendUnavailableError(f"{self.binary} not found on PATH")

        returncode, stdout, stderr = await self._run([path, "--version"], timeout=10)
        if returncode != 0:
            raise BackendUnavailableError(f"{path} --version failed: {stderr.strip()[:200]}")

        logger.info(f"yt-dlp executable: {path} ({stdout.decode().strip()})", "session")
        return path

    async def fetch_formats(self, client: str, video_id: str) -> List[StreamFormat]:
        args = [client, "-J", *self._common_args(), WATCH_URL.format(video_id)]

        try:
            returncode, stdout, stderr = await self._run(args, timeout=self.resolve_timeout)
        except asyncio.TimeoutError:
            raise MetadataFetchError(
                f"Metadata extraction timed out after {self.resolve_timeout}s",
                retryable=True,
            )

        if returncode != 0:
            raise _classify_error(stderr)

        try:
            info = json.loads(stdout)
        except ValueError as e:
            raise MetadataFetchError(f"yt-dlp returned invalid JSON: {e}")

        return formats_from_info(info, _static_decipher)

    async def download_audio(self, video_id: str, output_dir: Path) -> None:
        """Run ``yt-dlp -x`` into ``<output_dir>/<video_id>.%(ext)s``."""
        client = shutil.which(self.binary)
        if not client:
            raise DownloadFailedError(f"{self.binary} not found on PATH")

        args = [
            client,
            "-x",
            "--audio-format", settings.AUDIO_FORMAT,
            "--audio-quality", settings.AUDIO_QUALITY,
            "-f", DOWNLOAD_FORMAT,
            "-o", str(Path(output_dir) / f"{video_id}.%(ext)s"),
            *self._common_args(),
            WATCH_URL.format(video_id),
        ]

        try:
            returncode, _stdout, stderr = await self._run(args, timeout=self.download_timeout)
        except asyncio.TimeoutError:
            raise DownloadFailedError(f"Download timed out after {self.download_timeout}s")

        if returncode != 0:
            raise DownloadFailedError(stderr.strip() or "yt-dlp exited with an error")


def build_backend(name: str):
    """Create the configured platform backend."""
    if name == "ytdlp":
        return YtdlpBackend(
            proxy_url=settings.PROXY_URL,
            resolve_timeout=settings.RESOLVE_TIMEOUT_SECONDS,
            download_timeout=settings.DOWNLOAD_TIMEOUT_SECONDS,
        )
    if name == "ytdlp-cli":
        return YtdlpCliBackend(
            binary=settings.YTDLP_BINARY,
            proxy_url=settings.PROXY_URL,
            resolve_timeout=settings.RESOLVE_TIMEOUT_SECONDS,
            download_timeout=settings.DOWNLOAD_TIMEOUT_SECONDS,
        )
    raise ValueError(f"Unknown backend: {name}")
