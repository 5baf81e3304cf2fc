"""
Unit tests for domain exceptions and the exception handlers.

Tests cover:
- NotFoundException, ValidationException, ConflictException, TransientException
- The JSON envelope and status codes produced by each handler
- Retry-After on 503 responses
"""

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError

from captable.core.exceptions import (
    AppException,
    ConflictException,
    NotFoundException,
    TransientException,
    ValidationException,
    add_exception_handlers,
)
from captable.core.resilience import CircuitBreakerError


class TestDomainExceptions:
    def test_not_found_message_names_resource_and_id(self):
        exc = NotFoundException("Subscription", "abc-123")
        assert exc.status_code == 404
        assert exc.message == "Subscription with id 'abc-123' not found"
        assert isinstance(exc, AppException)

    def test_validation_names_the_field(self):
        exc = ValidationException("token_amount", "Token amount must be greater than zero")
        assert exc.status_code == 422
        assert exc.field == "token_amount"
        assert exc.details == [
            {"field": "token_amount", "message": "Token amount must be greater than zero"}
        ]

    def test_conflict(self):
        exc = ConflictException("Cannot delete the last remaining project")
        assert exc.status_code == 409
        assert str(exc) == "Cannot delete the last remaining project"

    def test_transient_carries_retry_after(self):
        exc = TransientException("Database temporarily unavailable", retry_after=12.5)
        assert exc.status_code == 503
        assert exc.retry_after == 12.5


class TestAddExceptionHandlers:
    def test_handlers_registered(self):
        mock_app = MagicMock()
        mock_app.exception_handler = MagicMock(return_value=lambda fn: fn)
        add_exception_handlers(mock_app)
        # AppException, CircuitBreakerError, OperationalError,
        # StarletteHTTPException, RequestValidationError, Exception
        assert mock_app.exception_handler.call_count == 6


def _app() -> FastAPI:
    app = FastAPI(debug=False)
    add_exception_handlers(app)
    return app


async def _get(app: FastAPI, path: str):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get(path)


class TestExceptionHandlersIntegration:
    @pytest.mark.asyncio
    async def test_conflict_renders_envelope(self):
        app = _app()

        @app.get("/conflict")
        async def conflict():
            raise ConflictException("Tokens have already been distributed")

        resp = await _get(app, "/conflict")
        assert resp.status_code == 409
        assert resp.json() == {"error": True, "message": "Tokens have already been distributed"}

    @pytest.mark.asyncio
    async def test_validation_exception_includes_details(self):
        app = _app()

        @app.get("/invalid")
        async def invalid():
            raise ValidationException("token_type", "Token type must be one of: ERC-20")

        resp = await _get(app, "/invalid")
        assert resp.status_code == 422
        body = resp.json()
        assert body["details"][0]["field"] == "token_type"

    @pytest.mark.asyncio
    async def test_circuit_breaker_handler_returns_503(self):
        app = _app()

        @app.get("/boom")
        async def boom():
            raise CircuitBreakerError(name="database", retry_after=10.0)

        resp = await _get(app, "/boom")
        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "10"
        assert resp.json()["error"] is True

    @pytest.mark.asyncio
    async def test_operational_error_returns_503(self):
        app = _app()

        @app.get("/db-down")
        async def db_down():
            raise OperationalError("SELECT 1", {}, ConnectionRefusedError("refused"))

        resp = await _get(app, "/db-down")
        assert resp.status_code == 503
        assert "Please retry" in resp.json()["message"]

    @pytest.mark.asyncio
    async def test_global_500_handler(self):
        app = _app()

        @app.get("/crash")
        async def crash():
            raise RuntimeError("unexpected")

        resp = await _get(app, "/crash")
        assert resp.status_code == 500
        assert "Internal Server Error" in resp.json()["message"]

    @pytest.mark.asyncio
    async def test_request_validation_returns_field_details(self):
        app = _app()

        class Body(BaseModel):
            name: str

        @app.post("/validate")
        async def validate(body: Body):
            return {"ok": True}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post("/validate", json={})
        assert resp.status_code == 422
        body = resp.json()
        assert body["message"] == "Validation failed"
        assert body["details"][0]["field"] == "body -> name"

    @pytest.mark.asyncio
    async def test_unknown_route_404(self):
        resp = await _get(_app(), "/nonexistent")
        assert resp.status_code == 404
        assert resp.json()["error"] is True
