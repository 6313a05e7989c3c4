"""Stream format descriptors and best-audio selection."""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional


# Decipher capability: called with the session's player state, returns a URL.
# May be a plain function or a coroutine function.
Decipher = Callable[[Any], Any]


@dataclass
class StreamFormat:
    """One available encoding of a video's media."""
    mime_type: str = ""
    bitrate: Optional[float] = None
    url: Optional[str] = None
    decipher: Optional[Decipher] = None
    format_id: Optional[str] = None
    ext: Optional[str] = None

    @property
    def is_audio(self) -> bool:
        return "audio" in (self.mime_type or "")

    @property
    def effective_bitrate(self) -> float:
        return self.bitrate or 0


def select_best_audio(formats: Optional[Iterable[StreamFormat]]) -> Optional[StreamFormat]:
    """
    Pick the audio format with the highest bitrate.

    Formats whose MIME type does not contain "audio" are ignored and a missing
    bitrate counts as 0. When several formats share the top bitrate the first
    one in input order wins.

    Args:
        formats: Candidate formats, may be empty or None

    Returns:
        The winning StreamFormat, or None when no audio format is present
    """
    if not formats:
        return None

    best = None
    for fmt in formats:
        if not fmt.is_audio:
            continue
        # Strict comparison keeps the earliest of equal bitrates
        if best is None or fmt.effective_bitrate > best.effective_bitrate:
            best = fmt
    return best
