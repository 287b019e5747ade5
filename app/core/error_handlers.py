# app/core/error_handlers.py
"""Render scheduling errors as JSON the calendar UI can switch on"""
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.services.scheduling.errors import SchedulingError

logger = logging.getLogger(__name__)


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"[{correlation_id}] {request.method} {request.url.path} rejected: {exc.code} ({exc.message})")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
