"""
FastAPI application for the scheduling console

Serves role-scoped calendar views and validates bookings, drags and
resizes before handing them to the scheduling backend
"""
import logging
import uvicorn
import httpx
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute

from app.config.settings import get_settings
from app.core.error_handlers import register_error_handlers
from app.core.middleware import correlation_id_middleware, request_logging_middleware
from app.core.monitoring import health_router
from app.api.v1.router import api_v1_router
from app.services.backend.scheduling_api_client import create_http_client
from app.services.calendar.calendar_session import CalendarSessionRegistry
from app.utils.my_logging import setup_logging

settings = get_settings()
logger = logging.getLogger(__name__)


def log_routes(app: FastAPI):
    """Log every registered route grouped by tag"""
    routes_by_tag = defaultdict(list)
    for route in app.routes:
        if isinstance(route, APIRoute):
            tag = route.tags[0] if route.tags else "other"
            for method in sorted(route.methods):
                routes_by_tag[tag].append((method, route.path, route.name))

    total = 0
    for tag, routes in sorted(routes_by_tag.items()):
        logger.info(f"[{tag.upper()}]")
        for method, path, name in sorted(routes, key=lambda x: (x[1], x[0])):
            logger.info(f"  {method:8} {path:60} ({name})")
            total += 1
    logger.info(f"Total routes registered: {total}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    setup_logging(level_name=settings.LOG_LEVEL)
    app.state.http_client = create_http_client(settings, transport=app.state.backend_transport)
    app.state.calendar_sessions = CalendarSessionRegistry(settings, max_sessions=settings.MAX_CALENDAR_SESSIONS)

    logger.info(f"{settings.APP_NAME} starting up, backend at {settings.BACKEND_API_URL}")
    log_routes(app)

    yield

    # Shutdown
    await app.state.http_client.aclose()
    logger.info(f"{settings.APP_NAME} shutting down")


def create_app(backend_transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    ``backend_transport`` replaces the network transport of the backend
    client, e.g. with an ``httpx.MockTransport``.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description="Availability and conflict resolution for the scheduling console",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )
    app.state.backend_transport = backend_transport

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PUT"],
        allow_headers=["*"],
    )

    # Last added runs first: the correlation id must exist before logging
    app.middleware("http")(request_logging_middleware)
    app.middleware("http")(correlation_id_middleware)

    register_error_handlers(app)

    # Include routers
    app.include_router(health_router, prefix="/health", tags=["monitoring"])
    app.include_router(api_v1_router, prefix="/api/v1", tags=["api"])

    @app.get("/")
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "calendar": "/api/v1/dashboard/calendar",
                "health": "/health",
                "docs": "/docs" if settings.DEBUG else "disabled"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
