"""Gateway exceptions with response-friendly metadata."""

from typing import Optional


class GatewayError(Exception):
    """Base exception for gateway errors with response metadata."""

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        retryable: bool = False,
        user_message: Optional[str] = None,
        status_code: int = 500,
    ):
        self.message = message
        self.error_code = error_code
        self.retryable = retryable
        # Message safe to show to end users
        self.user_message = user_message or message
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "user_message": self.user_message,
        }


# =============================================================================
# CLIENT ERRORS
# =============================================================================

class InvalidIdError(GatewayError):
    """Raised when a video id is not exactly 11 characters."""

    def __init__(self, message: str = "Invalid video ID"):
        super().__init__(
            message=message,
            error_code="INVALID_ID",
            retryable=False,
            user_message="Invalid video ID",
            status_code=400,
        )


# =============================================================================
# RESOLUTION ERRORS
# =============================================================================

class BackendUnavailableError(GatewayError):
    """Raised when the platform client session could not be created."""

    def __init__(self, message: str = "Backend session unavailable"):
        super().__init__(
            message=message,
            error_code="BACKEND_UNAVAILABLE",
            retryable=True,
            user_message="The audio backend is not available right now. Please try again.",
        )


class MetadataFetchError(GatewayError):
    """Raised when the platform rejects the id or returns no streaming data."""

    def __init__(self, message: str = "Failed to fetch streaming metadata", retryable: bool = False):
        super().__init__(
            message=message,
            error_code="METADATA_FETCH_FAILED",
            retryable=retryable,
            user_message="Could not load this video's streams.",
        )


class NoAudioFormatError(GatewayError):
    """Raised when metadata is present but has no audio-capable format."""

    def __init__(self, message: str = "No audio format available"):
        super().__init__(
            message=message,
            error_code="NO_AUDIO_FORMAT",
            retryable=False,
            user_message="This video has no audio stream.",
        )


class UrlUnresolvableError(GatewayError):
    """Raised when the selected format has neither a direct URL nor a working decipher."""

    def __init__(self, message: str = "Could not resolve audio URL"):
        super().__init__(
            message=message,
            error_code="URL_UNRESOLVABLE",
            retryable=False,
            user_message="The audio stream for this video could not be resolved.",
        )


# =============================================================================
# DELIVERY ERRORS
# =============================================================================

class DownloadFailedError(GatewayError):
    """Raised when a download ran but produced no matching output file."""

    def __init__(self, message: str = "Download failed"):
        super().__init__(
            message=message,
            error_code="DOWNLOAD_FAILED",
            retryable=True,
            user_message="Download failed. Please try again.",
        )


class UpstreamStreamError(GatewayError):
    """Raised when the resolved media URL cannot be opened for relaying."""

    def __init__(self, message: str = "Stream error"):
        super().__init__(
            message=message,
            error_code="UPSTREAM_STREAM_FAILED",
            retryable=True,
            user_message="Stream error",
        )


class SearchError(GatewayError):
    """Raised when the search provider fails."""

    def __init__(self, message: str = "Search failed"):
        super().__init__(
            message=message,
            error_code="SEARCH_FAILED",
            retryable=True,
            user_message="Search failed. Please try again.",
        )


# =============================================================================
# ERROR CLASSIFICATION HELPERS
# =============================================================================

def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, GatewayError):
        return error.retryable
    # Unknown errors are assumed retryable (might be transient)
    return True


def get_error_response(error: Exception) -> dict:
    """Get a standardized error response dict from any exception."""
    if isinstance(error, GatewayError):
        return error.to_dict()

    return {
        "error_code": "INTERNAL_ERROR",
        "message": str(error),
        "retryable": True,
        "user_message": "An unexpected error occurred. Please try again.",
    }
