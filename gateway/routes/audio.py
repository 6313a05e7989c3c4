"""Audio resolution, streaming and download endpoints."""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import (
    FileResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    StreamingResponse,
)

from gateway.config import settings
from gateway.models.schemas import AudioUrlResponse, ErrorResponse
from gateway.services import logger, streaming
from gateway.services.cache import AudioCache, get_audio_cache
from gateway.services.resolver import ResolutionEngine, get_engine, validate_video_id
from gateway.services.streaming import UpstreamStream
from gateway.utils.exceptions import GatewayError, get_error_response


router = APIRouter(tags=["audio"])

AUDIO_MEDIA_TYPE = "audio/mpeg"


def _log_failure(e: GatewayError, category: str, video_id: str) -> None:
    logger.warn(f"{e.error_code}: {e.message}", category, {"video_id": video_id, **e.to_dict()})


def _text_error(e: GatewayError, category: str, video_id: str) -> PlainTextResponse:
    _log_failure(e, category, video_id)
    return PlainTextResponse(e.message, status_code=e.status_code)


def relay_response(upstream: UpstreamStream) -> StreamingResponse:
    """
    Build the proxy-mode response for an opened upstream.

    The upstream is also closed as a background task, which Starlette runs
    even when the client disconnects before the body iterator starts.
    """
    background = BackgroundTasks()
    background.add_task(upstream.aclose)
    return StreamingResponse(
        upstream.iter_bytes(),
        status_code=206 if upstream.status_code == 206 else 200,
        media_type=AUDIO_MEDIA_TYPE,
        headers=upstream.headers(),
        background=background,
    )


@router.get(
    "/api/audio-url/{video_id}",
    response_model=AudioUrlResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid video ID"},
        500: {"model": ErrorResponse, "description": "Resolution failed"},
    },
)
async def get_audio_url(video_id: str, engine: ResolutionEngine = Depends(get_engine)):
    """
    Resolve the best audio stream URL for a video.

    The URL is signed and short-lived; it is resolved fresh on every request.
    """
    logger.info(f"Audio URL: {video_id}", "resolve")

    try:
        validate_video_id(video_id)
        resolved = await engine.resolve_audio_url(video_id)
    except GatewayError as e:
        _log_failure(e, "resolve", video_id)
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    except Exception as e:
        logger.error(f"Unexpected audio URL error: {e}", "resolve", {"video_id": video_id, **get_error_response(e)})
        return JSONResponse(status_code=500, content={"error": str(e)})

    return AudioUrlResponse(url=resolved.url, video_id=resolved.video_id)


@router.get(
    "/api/stream/{video_id}",
    responses={
        200: {"content": {AUDIO_MEDIA_TYPE: {}}, "description": "Audio bytes (proxy mode)"},
        302: {"description": "Redirect to the resolved URL (redirect mode)"},
        400: {"description": "Invalid video ID"},
        500: {"description": "Stream error"},
    },
)
async def stream_audio(
    video_id: str,
    request: Request,
    engine: ResolutionEngine = Depends(get_engine),
):
    """
    Stream a video's audio.

    STREAM_MODE=redirect answers 302 to the resolved URL. STREAM_MODE=proxy
    relays the bytes; a client Range header is forwarded upstream.
    """
    logger.info(f"Stream: {video_id}", "stream", {"mode": settings.STREAM_MODE})

    try:
        validate_video_id(video_id)
        resolved = await engine.resolve_audio_url(video_id)

        if settings.STREAM_MODE == "redirect":
            return RedirectResponse(resolved.url, status_code=302)

        upstream = await streaming.open_upstream(
            resolved.url,
            video_id=video_id,
            range_header=request.headers.get("range"),
        )
    except GatewayError as e:
        return _text_error(e, "stream", video_id)
    except Exception as e:
        logger.error(f"Unexpected stream error: {e}", "stream", {"video_id": video_id, **get_error_response(e)})
        return PlainTextResponse("Stream error", status_code=500)

    return relay_response(upstream)


@router.get(
    "/api/download/{video_id}",
    responses={
        200: {"content": {AUDIO_MEDIA_TYPE: {}}, "description": "Cached audio file"},
        302: {"description": "Redirect to the stream endpoint (redirect mode)"},
        400: {"description": "Invalid video ID"},
        500: {"description": "Download failed"},
    },
)
async def download_audio(
    video_id: str,
    cache: AudioCache = Depends(get_audio_cache),
):
    """
    Download a video's audio as an mp3 attachment.

    DOWNLOAD_MODE=file serves from the disk cache, downloading on a miss.
    DOWNLOAD_MODE=redirect sends the client to the stream endpoint.
    """
    logger.info(f"Download: {video_id}", "cache", {"mode": settings.DOWNLOAD_MODE})

    try:
        validate_video_id(video_id)
        if settings.DOWNLOAD_MODE == "redirect":
            return RedirectResponse(f"/api/stream/{video_id}", status_code=302)
        path = await cache.get_or_download(video_id)
    except GatewayError as e:
        return _text_error(e, "cache", video_id)
    except Exception as e:
        logger.error(f"Unexpected download error: {e}", "cache", {"video_id": video_id, **get_error_response(e)})
        return PlainTextResponse("Download error", status_code=500)

    return FileResponse(
        path,
        media_type=AUDIO_MEDIA_TYPE,
        filename=f"{video_id}.{cache.extension}",
    )
