"""Tests for global exception handlers."""

import pytest
from fastapi import FastAPI
from pydantic import BaseModel
from starlette.testclient import TestClient

from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from core.exceptions import ExceedsBalanceError, NotFoundError, StorageError


class Body(BaseModel):
    amount_cents: int


@pytest.fixture
def error_client():
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    @app.get("/billing-error")
    async def billing_error():
        raise ExceedsBalanceError("Payment of 500 exceeds balance 100")

    @app.get("/not-found")
    async def not_found():
        raise NotFoundError("Invoice x not found", code="INVOICE_NOT_FOUND")

    @app.get("/storage")
    async def storage():
        raise StorageError("Database unavailable")

    @app.get("/value-error")
    async def value_error():
        raise ValueError("bad cursor")

    @app.post("/validated")
    async def validated(body: Body):
        return {"ok": True}

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return TestClient(app, raise_server_exceptions=False)


class TestErrorHandlers:

    def test_billing_error_code_and_status(self, error_client):
        response = error_client.get("/billing-error")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == {"code": "EXCEEDS_BALANCE", "message": "Payment of 500 exceeds balance 100"}

    def test_not_found_with_specific_code(self, error_client):
        response = error_client.get("/not-found")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "INVOICE_NOT_FOUND"

    def test_storage_error_is_503(self, error_client):
        response = error_client.get("/storage")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "STORAGE_ERROR"

    def test_value_error_is_400(self, error_client):
        response = error_client.get("/value-error")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

    def test_request_validation_is_422(self, error_client):
        response = error_client.post("/validated", json={"amount_cents": "lots"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_unhandled_is_500_without_details(self, error_client):
        response = error_client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "INTERNAL_ERROR"
        assert "secret internals" not in body["error"]["message"]

    def test_error_carries_request_id(self, error_client):
        response = error_client.get("/not-found", headers={"X-Request-ID": "trace-1"})

        assert response.json()["meta"]["request_id"] == "trace-1"
