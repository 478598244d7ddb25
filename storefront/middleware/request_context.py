import time
import uuid

import structlog
from fastapi import Request

from storefront.core.config import settings

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Correlation-ID"

_BASE_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}


def _security_headers() -> dict:
    headers = dict(_BASE_SECURITY_HEADERS)
    if settings.ENVIRONMENT == "production":
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers


async def request_context(request: Request, call_next):
    """Outermost wrapper: binds a correlation id for the request's logs,
    times the call and stamps the response headers."""
    correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
    request.state.correlation_id = correlation_id
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    started = time.perf_counter()
    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
    )
    try:
        response = await call_next(request)
        elapsed = time.perf_counter() - started
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
        )
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")

    response.headers.update(_security_headers())
    response.headers["X-Process-Time"] = f"{elapsed:.6f}"
    response.headers[CORRELATION_HEADER] = correlation_id
    return response
