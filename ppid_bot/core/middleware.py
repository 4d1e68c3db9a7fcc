"""
FastAPI Middleware

- Correlation ID per request (taken from the gateway's header when present)
- One access-log line per request, chat ids masked
- Exception handlers: every error body is ``{"error": {code, message, details}}``
"""
import re
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ppid_bot.core.exceptions import AppException, ErrorCode
from ppid_bot.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Digit runs of 8+ in paths are phone-based chat ids
_PHONE_IN_PATH_RE = re.compile(r"(\d{4})\d{4,}")

# The SSE stream stays open for hours
_UNLOGGED_PATHS = frozenset({"/api/operator/events"})

# The gateway posts every inbound message here; INFO would drown the log
_QUIET_PREFIX = "/api/whatsapp/"


def _mask_path_pii(path: str) -> str:
    return _PHONE_IN_PATH_RE.sub(r"\1****", path)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log; webhook traffic at DEBUG, errors at WARNING or above."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in _UNLOGGED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        safe_path = _mask_path_pii(path)
        fields = {"method": request.method, "path": safe_path}

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                f"{request.method} {safe_path} raised",
                extra_data={**fields, "duration_ms": _elapsed_ms(started), "error": str(exc)},
                exc_info=True,
            )
            raise

        fields.update(status_code=response.status_code, duration_ms=_elapsed_ms(started))
        message = f"{request.method} {safe_path} -> {response.status_code}"
        if response.status_code >= 500:
            logger.error(message, extra_data=fields)
        elif response.status_code >= 400:
            logger.warning(message, extra_data=fields)
        elif path.startswith(_QUIET_PREFIX):
            logger.debug(message, extra_data=fields)
        else:
            logger.info(message, extra_data=fields)
        return response


def _error_response(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={CORRELATION_HEADER: get_correlation_id()},
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": _mask_path_pii(request.url.path),
        },
    )
    return _error_response(exc.status_code, exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema violations keep FastAPI's 422 but use the common error body."""
    fields = [
        {"field": ".".join(str(part) for part in error.get("loc", ())[1:]), "message": error.get("msg", "")}
        for error in exc.errors()
    ]
    logger.info(
        "Request rejected by validation",
        extra_data={"path": _mask_path_pii(request.url.path), "fields": [f["field"] for f in fields]},
    )
    return _error_response(
        422,
        {
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": "Request body failed validation",
                "details": {"fields": fields},
            }
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": _mask_path_pii(request.url.path),
        },
        exc_info=True,
    )
    return _error_response(
        500,
        {"error": {"code": ErrorCode.INTERNAL_ERROR.value, "message": "An unexpected error occurred", "details": {}}},
    )


def setup_middleware(app: FastAPI) -> None:
    """The last middleware added runs first: correlation id, then logging."""
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
