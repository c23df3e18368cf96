"""Health check endpoints."""

from fastapi import APIRouter, status
from fastapi.responses import ORJSONResponse

from src.config import get_settings
from src.core.store import get_store


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness():
    """Readiness probe - checks if the document store is available."""
    settings = get_settings()
    store = get_store()
    content = {
        "status": "ready" if store is not None else "unavailable",
        "environment": settings.environment,
        "debug": settings.debug,
        "store_backend": store.name if store is not None else settings.store_backend,
    }
    if store is None:
        return ORJSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=content)
    return content


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
