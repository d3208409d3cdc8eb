"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from neuronova.adapters.throttle.base import Decision
from neuronova.core.config import ThrottleSettings
from neuronova.core.errors import (
    AppError,
    AuthenticationAppError,
    NotFoundAppError,
    QuotaExceededAppError,
    ValidationAppError,
)
from neuronova.core.exception_handlers import general_exception_handler, setup_exception_handlers
from neuronova.core.rate_limit import ThrottleRejectedError


@pytest.fixture
def app_with_handlers() -> FastAPI:
    app = FastAPI()
    app.state.throttle_settings = ThrottleSettings()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    @pytest.mark.parametrize(
        ("error_cls", "status_code"),
        [
            (ValidationAppError, 400),
            (AuthenticationAppError, 403),
            (NotFoundAppError, 404),
            (QuotaExceededAppError, 429),
        ],
    )
    def test_status_codes(self, client: TestClient, app_with_handlers: FastAPI, error_cls, status_code):
        @app_with_handlers.get("/boom")
        async def boom():
            raise error_cls(code="test_code", message="Test message")

        response = client.get("/boom")

        assert response.status_code == status_code
        data = response.json()
        assert data["error"]["code"] == "test_code"
        assert data["error"]["message"] == "Test message"
        assert "request_id" in data["error"]
        assert "details" not in data["error"]

    def test_details_included_when_present(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/missing")
        async def missing():
            raise NotFoundAppError(
                code="unknown_quota_service",
                message="No quota",
                details={"service": "scopus", "known": ["arxiv"]},
            )

        data = client.get("/missing").json()

        assert data["error"]["details"] == {"service": "scopus", "known": ["arxiv"]}

    def test_quota_error_sets_retry_after(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/quota")
        async def quota():
            raise QuotaExceededAppError(
                code="external_quota_exceeded",
                message="Rate limit exceeded for pubmed, please try again later.",
                details={"service": "pubmed", "retry_after": 42},
            )

        response = client.get("/quota")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"


class TestThrottleRejectedHandler:
    def test_rejection_body(self, client: TestClient, app_with_handlers: FastAPI):
        decision = Decision(
            admitted=False,
            limit=10,
            remaining=0,
            reset_at=1_000,
            retry_after_seconds=7,
        )

        @app_with_handlers.get("/login")
        async def login():
            raise ThrottleRejectedError(decision, "Too many authentication attempts, please try again later.", "auth")

        response = client.get("/login")

        assert response.status_code == 429
        assert response.json() == {
            "success": False,
            "error": "Too many authentication attempts, please try again later.",
            "retryAfter": 7,
        }
        assert response.headers["Retry-After"] == "7"
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Reset"] == "1970-01-01T00:00:01.000Z"


class TestGeneralExceptionHandler:
    def test_unexpected_exception_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/crash")
        async def crash():
            raise RuntimeError("store connection lost")

        response = client.get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "internal_server_error"
        assert "store connection" not in response.text

    def test_general_exception_handler_never_leaks_stack_trace(self):
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        response = asyncio.run(general_exception_handler(request, ValueError("Test error with details")))

        response_text = bytes(response.body).decode()
        data = json.loads(response_text)
        assert data["error"]["code"] == "internal_server_error"
        assert "Traceback" not in response_text
        assert "ValueError" not in response_text


def test_setup_registers_all_handlers(app_with_handlers: FastAPI):
    assert ThrottleRejectedError in app_with_handlers.exception_handlers
    assert AppError in app_with_handlers.exception_handlers
    assert Exception in app_with_handlers.exception_handlers
