"""Health checks and monitoring endpoints"""
from fastapi import APIRouter, Request

from app.config.settings import get_settings
from app.services.backend.scheduling_api_client import SchedulingApiClient

health_router = APIRouter()


@health_router.get("/")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": get_settings().APP_NAME}


@health_router.get("/detailed")
async def detailed_health_check(request: Request):
    """Detailed health check with the scheduling backend"""
    checks = {
        "api": "healthy",
        "backend": "unknown",
        "calendar_sessions": len(request.app.state.calendar_sessions),
        "overall": "unknown"
    }

    api = SchedulingApiClient(
        request.app.state.http_client,
        correlation_id=getattr(request.state, "correlation_id", None)
    )
    checks["backend"] = "healthy" if await api.ping() else "unreachable"

    # Overall status
    if checks["backend"] == "healthy":
        checks["overall"] = "healthy"
    else:
        checks["overall"] = "degraded"

    return checks
