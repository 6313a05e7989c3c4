"""Audio Gateway - Main FastAPI Application."""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gateway.config import settings
from gateway.routes import audio, health, search
from gateway.services import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info(f"Audio Gateway starting on port {settings.PORT}", "general")

    # The cache store assumes its directory exists
    Path(settings.DOWNLOADS_DIR).mkdir(parents=True, exist_ok=True)
    logger.info(
        f"Downloads directory: {settings.DOWNLOADS_DIR}",
        "general",
        {
            "backend": settings.BACKEND,
            "stream_mode": settings.STREAM_MODE,
            "download_mode": settings.DOWNLOAD_MODE,
        }
    )

    yield

    logger.info("Audio Gateway shutting down", "general")


app = FastAPI(
    title="Audio Gateway",
    description="Search YouTube and resolve, stream or download audio by video id",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Disposition"],
)

app.include_router(health.router)
app.include_router(search.router)
app.include_router(audio.router)


@app.get("/", include_in_schema=False)
async def root():
    return {"service": "audio-gateway", "status": "running"}


def run():
    import uvicorn

    uvicorn.run(
        "gateway.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.ENVIRONMENT == "development",
    )


if __name__ == "__main__":
    run()
