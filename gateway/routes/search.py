"""Search endpoint."""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from gateway.models.schemas import SearchResponse, ErrorResponse
from gateway.services import logger
from gateway.services import search as search_service
from gateway.utils.exceptions import GatewayError, get_error_response, is_retryable


router = APIRouter(tags=["search"])


@router.get(
    "/api/search",
    response_model=SearchResponse,
    responses={500: {"model": ErrorResponse, "description": "Search provider failed"}},
)
async def search_videos(q: str = Query("", description="Search query")):
    """Search YouTube videos. A missing query is treated as an empty string."""
    logger.info(f"Search: {q[:100]}", "search")

    try:
        items = await search_service.search(q)
    except GatewayError as e:
        logger.warn(
            f"{e.error_code}: {e.message}",
            "search",
            {"query": q[:100], "retryable": is_retryable(e)}
        )
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    except Exception as e:
        logger.error(f"Unexpected search error: {e}", "search", {"error_type": type(e).__name__, **get_error_response(e)})
        return JSONResponse(status_code=500, content={"error": str(e)})

    return SearchResponse(items=items)
