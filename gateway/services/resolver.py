"""Audio URL resolution engine."""

import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from gateway.config import settings
from gateway.services import logger
from gateway.services.formats import select_best_audio
from gateway.services.session import BackendSession, PlatformBackend
from gateway.utils.exceptions import (
    GatewayError,
    InvalidIdError,
    NoAudioFormatError,
    UrlUnresolvableError,
)

VIDEO_ID_LENGTH = 11


@dataclass
class ResolvedAudio:
    """A freshly resolved, short-lived audio URL."""
    url: str
    video_id: str
    format_id: Optional[str] = None
    mime_type: Optional[str] = None
    bitrate: float = 0


def validate_video_id(video_id: str) -> str:
    """Raise InvalidIdError unless ``video_id`` is exactly 11 characters."""
    if not video_id or len(video_id) != VIDEO_ID_LENGTH:
        raise InvalidIdError()
    return video_id


class ResolutionEngine:
    """
    Resolves a video id into a playable audio URL.

    Each call is an independent resolution: URLs are signed and short-lived, so
    nothing is cached here. The only shared state is the backend session,
    which is created once on first use.
    """

    def __init__(self, session: BackendSession):
        self.session = session

    @classmethod
    def from_backend(cls, backend: PlatformBackend) -> "ResolutionEngine":
        return cls(BackendSession(backend, init_timeout=settings.SESSION_INIT_TIMEOUT_SECONDS))

    async def resolve_audio_url(self, video_id: str) -> ResolvedAudio:
        """
        Resolve the best audio stream URL for a video.

        Raises:
            InvalidIdError: Id is not 11 characters (no backend call is made)
            BackendUnavailableError: Session could not be created
            MetadataFetchError: Platform rejected the id or returned nothing
            NoAudioFormatError: No audio-only format in the metadata
            UrlUnresolvableError: Selected format has no usable URL
        """
        validate_video_id(video_id)
        start_time = time.time()

        try:
            formats = await self.session.fetch_streaming_metadata(video_id)

            audio_formats = [f for f in formats if f.is_audio]
            candidate = select_best_audio(audio_formats)
            if candidate is None:
                raise NoAudioFormatError(
                    f"No audio format among {len(formats)} formats for {video_id}"
                )

            if candidate.decipher is not None:
                url = await self.session.decipher(candidate)
            elif candidate.url:
                url = candidate.url
            else:
                raise UrlUnresolvableError(
                    f"Format {candidate.format_id or '?'} for {video_id} has no URL and no decipher"
                )

        except GatewayError as e:
            logger.warn(
                f"Resolution failed for {video_id}: {e.message[:200]}",
                "resolve",
                {"video_id": video_id, "error_code": e.error_code}
            )
            raise

        logger.info(
            f"Resolved audio for {video_id} in {time.time() - start_time:.2f}s",
            "resolve",
            {
                "video_id": video_id,
                "format_id": candidate.format_id,
                "mime_type": candidate.mime_type,
                "bitrate": candidate.effective_bitrate,
                "deciphered": candidate.decipher is not None,
            }
        )

        return ResolvedAudio(
            url=url,
            video_id=video_id,
            format_id=candidate.format_id,
            mime_type=candidate.mime_type,
            bitrate=candidate.effective_bitrate,
        )


@lru_cache()
def get_engine() -> ResolutionEngine:
    """Get the process-wide resolution engine for the configured backend."""
    from gateway.services.youtube import build_backend

    return ResolutionEngine.from_backend(build_backend(settings.BACKEND))
