"""Global error handlers rendering the compatibility envelope with a request_id."""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from stellr.api.request_id import get_request_id
from stellr.domain.matching.exceptions import MatchingError

logger = logging.getLogger(__name__)

STARTED_AT_ATTR = "compat_started_at"


def _elapsed_ms(request: Request) -> float:
    started = getattr(request.state, STARTED_AT_ATTR, None)
    if started is None:
        return 0.0
    return round((time.perf_counter() - started) * 1000.0, 3)


def error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "success": False,
        "data": None,
        "error": {"code": code, "message": message},
        "performance": {"response_time_ms": _elapsed_ms(request), "cache_used": False, "batch_size": 0},
        "request_id": get_request_id(request),
    }
    return JSONResponse(status_code=status_code, content=payload)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MatchingError)
    async def matching_exc_handler(request: Request, exc: MatchingError):  # type: ignore[override]
        if exc.status_code >= 500:
            logger.error("matching_error", extra={"reason": exc.reason, "status": exc.status_code})
        return error_response(request, exc.status_code, exc.reason, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        detail = exc.detail if isinstance(exc.detail, str) else "http_error"
        return error_response(request, exc.status_code, detail, detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        # 422 is reserved for insufficient profile data
        return error_response(request, 400, "invalid_request", "Request body failed validation")

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
        logger.exception("unhandled_error", extra={"path": request.url.path})
        return error_response(request, 500, "internal_error", "Internal server error")
