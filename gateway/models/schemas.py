from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List


class HealthCheck(BaseModel):
    """Response model for health check."""

    status: str = "ok"
    timestamp: str


class SearchResult(BaseModel):
    """One video returned by the search provider."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    artist: str = "Unknown"
    thumbnail: str
    duration: Optional[str] = None
    author_id: str = Field("", alias="authorId")


class SearchResponse(BaseModel):
    """Response model for search."""

    items: List[SearchResult]


class AudioUrlResponse(BaseModel):
    """Response model for a resolved audio URL."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    video_id: str = Field(
        ...,
        alias="videoId",
        description="YouTube video ID (11 characters)",
        examples=["dQw4w9WgXcQ"],
    )


class ErrorResponse(BaseModel):
    """Response model for JSON endpoint errors."""

    error: str
