from typing import List, Literal, Optional

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    PORT: int = 3001
    ENVIRONMENT: str = "production"
    CORS_ORIGINS: List[str] = ["*"]

    # Storage
    DOWNLOADS_DIR: str = "/tmp/audio-gateway/downloads"
    LOG_DIR: str = "/tmp/audio-gateway/logs"

    # Platform backend: "ytdlp" (in-process library) or "ytdlp-cli" (external binary)
    BACKEND: Literal["ytdlp", "ytdlp-cli"] = "ytdlp"
    YTDLP_BINARY: str = "yt-dlp"
    PROXY_URL: Optional[str] = None

    # Delivery modes
    STREAM_MODE: Literal["redirect", "proxy"] = "redirect"
    DOWNLOAD_MODE: Literal["file", "redirect"] = "file"

    # Download variant
    AUDIO_FORMAT: str = "mp3"
    AUDIO_QUALITY: str = "0"

    # Search
    SEARCH_LIMIT: int = 20

    # Timeouts (seconds)
    SESSION_INIT_TIMEOUT_SECONDS: float = 30
    RESOLVE_TIMEOUT_SECONDS: float = 60
    DOWNLOAD_TIMEOUT_SECONDS: float = 180
    SEARCH_TIMEOUT_SECONDS: float = 30
    STREAM_TIMEOUT_SECONDS: float = 30

    # Proxy-stream relay
    STREAM_CHUNK_SIZE: int = 64 * 1024

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
