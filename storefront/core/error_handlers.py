from datetime import datetime
from typing import Any, List, Optional, Tuple

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from storefront.core.config import settings
from storefront.core.exceptions import APIError

logger = structlog.get_logger()


def error_envelope(status_code: int, message: str, errors: Optional[List[Any]] = None) -> JSONResponse:
    """Every failure leaves the API in this one shape."""
    body = {
        "success": False,
        "message": message,
        "data": None,
        "errors": errors or [],
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _unpack_detail(detail: Any) -> Tuple[str, list]:
    if isinstance(detail, str):
        return detail, []
    if isinstance(detail, dict):
        return detail.get("message", "Request failed"), detail.get("errors", [])
    if isinstance(detail, list):
        return "Request failed", detail
    return "Request failed", []


async def _on_api_error(request: Request, exc: APIError):
    return error_envelope(exc.status_code, exc.message, exc.errors)


async def _on_http_exception(request: Request, exc: HTTPException):
    message, errors = _unpack_detail(exc.detail)
    return error_envelope(exc.status_code, message, errors)


async def _on_validation_error(request: Request, exc: RequestValidationError):
    return error_envelope(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", exc.errors())


async def _on_rate_limited(request: Request, exc: RateLimitExceeded):
    logger.warning("rate_limited", path=request.url.path)
    return error_envelope(status.HTTP_429_TOO_MANY_REQUESTS, "Too many requests. Please try again later.")


async def _on_unhandled(request: Request, exc: Exception):
    logger.exception("unhandled_exception", path=request.url.path, error_type=type(exc).__name__)

    # Never leak internals outside local debugging
    if settings.DEBUG and settings.ENVIRONMENT != "production":
        return error_envelope(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Internal server error: {exc}",
            [{"type": type(exc).__name__}],
        )
    return error_envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, _on_api_error)
    app.add_exception_handler(HTTPException, _on_http_exception)
    app.add_exception_handler(RequestValidationError, _on_validation_error)
    app.add_exception_handler(RateLimitExceeded, _on_rate_limited)
    app.add_exception_handler(Exception, _on_unhandled)
