"""
API v1 router setup
All dashboard routes require the backend-issued JWT
"""
from fastapi import APIRouter

from app.api.v1.dashboard import calendar, schedule_settings

api_v1_router = APIRouter()

# ============================================================================
# DASHBOARD ROUTES (JWT authentication required)
# ============================================================================
api_v1_router.include_router(
    calendar.router,
    prefix="/dashboard/calendar",
    tags=["Dashboard"]
)

api_v1_router.include_router(
    schedule_settings.router,
    prefix="/dashboard/schedule",
    tags=["Dashboard"]
)


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """
    API information and available endpoints.
    """
    return {
        "version": "1.0",
        "authentication": {
            "dashboard": "JWT Bearer token issued by the scheduling backend"
        },
        "endpoints": {
            "calendar": "/api/v1/dashboard/calendar",
            "schedule": "/api/v1/dashboard/schedule"
        }
    }
