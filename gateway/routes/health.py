"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter

from gateway.models.schemas import HealthCheck


router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthCheck)
async def health_check() -> HealthCheck:
    """Liveness check. Never touches the platform backend."""
    return HealthCheck(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )
