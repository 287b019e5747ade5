# app/core/middleware.py
"""Custom middleware for request handling"""
import uuid
import time
import logging
from starlette.requests import Request

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


async def correlation_id_middleware(request: Request, call_next):
    """
    Add correlation ID to all requests for tracing.

    The id is stored on ``request.state`` so the backend client can forward
    it with every call it makes for this request.
    """
    correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
    request.state.correlation_id = correlation_id

    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


async def request_logging_middleware(request: Request, call_next):
    """Log every request with its status and duration"""
    start_time = time.time()
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.info(f"[{correlation_id}] {request.method} {request.url.path} started")

    response = await call_next(request)

    duration_ms = round((time.time() - start_time) * 1000, 2)
    log = logger.warning if response.status_code >= 500 else logger.info
    log(
        f"[{correlation_id}] {request.method} {request.url.path} "
        f"-> {response.status_code} in {duration_ms}ms"
    )

    return response
