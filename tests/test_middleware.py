"""
Tests for ppid_bot/core/middleware.py

Covers:
- CorrelationIdMiddleware: correlation ID propagation
- RequestLoggingMiddleware: request logging with masked chat ids
- Exception handlers: AppException and generic Exception
- _mask_path_pii: phone numbers in URLs
- setup_middleware / setup_exception_handlers on a FastAPI app
"""
import pytest
from fastapi import FastAPI
from pydantic import BaseModel, Field
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from ppid_bot.core.exceptions import AppException, ErrorCode, NotFoundException
from ppid_bot.core.middleware import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    _mask_path_pii,
    setup_exception_handlers,
    setup_middleware,
)


# ============================================================================
# Helpers
# ============================================================================


def _hello(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def _error(request: Request) -> PlainTextResponse:
    raise ValueError("boom")


def _build_app(*, middlewares: list[tuple] | None = None) -> Starlette:
    """Minimal Starlette app with the given middleware."""
    app = Starlette(routes=[Route("/test", _hello), Route("/error", _error)])
    for mw_class, kwargs in middlewares or []:
        app.add_middleware(mw_class, **kwargs)
    return app


class _EchoBody(BaseModel):
    chat_id: str = Field(min_length=1)


def _build_fastapi_app() -> FastAPI:
    app = FastAPI()
    setup_middleware(app)
    setup_exception_handlers(app)

    @app.get("/missing")
    async def missing() -> dict:
        raise NotFoundException("Evaluation", "ev-1")

    @app.get("/conflict")
    async def conflict() -> dict:
        raise AppException(
            "WhatsApp is not connected",
            error_code=ErrorCode.TRANSPORT_UNAVAILABLE,
            status_code=409,
        )

    @app.get("/crash")
    async def crash() -> dict:
        raise RuntimeError("unexpected")

    @app.post("/echo")
    async def echo(body: _EchoBody) -> dict:
        return {"chat_id": body.chat_id}

    return app


# ============================================================================
# _mask_path_pii
# ============================================================================


class TestMaskPathPii:
    """Phone numbers in URL paths"""

    @pytest.mark.unit
    def test_masks_indonesian_number(self) -> None:
        """Keeps the first four digits only"""
        masked = _mask_path_pii("/api/operator/chats/628123456789@s.whatsapp.net")
        assert masked == "/api/operator/chats/6281****@s.whatsapp.net"

    @pytest.mark.unit
    def test_no_phone_no_change(self) -> None:
        path = "/api/operator/status"
        assert _mask_path_pii(path) == path

    @pytest.mark.unit
    def test_short_number_not_masked(self) -> None:
        """Ids shorter than eight digits stay readable"""
        assert "****" not in _mask_path_pii("/api/operator/evaluations/12345/resolve")

    @pytest.mark.unit
    def test_multiple_numbers(self) -> None:
        masked = _mask_path_pii("/a/628123456789/b/628987654321")
        assert masked.count("****") == 2


# ============================================================================
# CorrelationIdMiddleware
# ============================================================================


class TestCorrelationIdMiddleware:
    """Correlation ID propagation"""

    @pytest.mark.unit
    def test_generates_correlation_id_when_missing(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            response = client.get("/test")
            assert response.status_code == 200
            assert response.headers["x-correlation-id"]

    @pytest.mark.unit
    def test_preserves_existing_correlation_id(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            response = client.get("/test", headers={"X-Correlation-ID": "gateway-123"})
            assert response.headers["x-correlation-id"] == "gateway-123"

    @pytest.mark.unit
    def test_correlation_id_unique_per_request(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            first = client.get("/test").headers["x-correlation-id"]
            second = client.get("/test").headers["x-correlation-id"]
            assert first != second


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================


class TestRequestLoggingMiddleware:
    """Request logging"""

    @pytest.mark.unit
    def test_successful_request_passes_through(self) -> None:
        app = _build_app(middlewares=[(RequestLoggingMiddleware, {})])
        with TestClient(app) as client:
            assert client.get("/test").text == "ok"

    @pytest.mark.unit
    def test_exception_in_handler_reraised(self) -> None:
        """Errors are logged and still surface as 500"""
        app = _build_app(middlewares=[(RequestLoggingMiddleware, {})])
        with TestClient(app, raise_server_exceptions=False) as client:
            assert client.get("/error").status_code == 500


# ============================================================================
# Exception handlers
# ============================================================================


class TestExceptionHandlers:
    """AppException rendering"""

    @pytest.mark.unit
    def test_not_found_rendered_as_structured_json(self) -> None:
        with TestClient(_build_fastapi_app()) as client:
            response = client.get("/missing")

        assert response.status_code == 404
        body = response.json()
        assert body["error"]["code"] == ErrorCode.NOT_FOUND.value
        assert body["error"]["details"]["identifier"] == "ev-1"
        assert response.headers["x-correlation-id"]

    @pytest.mark.unit
    def test_custom_status_code_is_kept(self) -> None:
        with TestClient(_build_fastapi_app()) as client:
            response = client.get("/conflict")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == ErrorCode.TRANSPORT_UNAVAILABLE.value

    @pytest.mark.unit
    def test_unexpected_error_hides_details(self) -> None:
        with TestClient(_build_fastapi_app(), raise_server_exceptions=False) as client:
            response = client.get("/crash")

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "ERR_1000"
        assert body["error"]["message"] == "An unexpected error occurred"
        assert body["error"]["details"] == {}

    @pytest.mark.unit
    def test_validation_error_uses_common_body(self) -> None:
        """Schema violations keep 422 and list the offending fields"""
        with TestClient(_build_fastapi_app()) as client:
            response = client.post("/echo", json={"chat_id": ""})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == ErrorCode.VALIDATION_ERROR.value
        assert error["details"]["fields"][0]["field"] == "chat_id"
