"""
Tests for the error envelope produced by the registered exception handlers
"""
import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel

from app.core.errors import (
    ErrorCode, InsufficientInventoryError, NotFoundError, SubscriptionLimitError,
    ValidationError, register_exception_handlers,
)


class Payload(BaseModel):
    quantity: int


@pytest.fixture
def error_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/not-found")
    async def not_found():
        raise NotFoundError("Order")

    @app.get("/invalid")
    async def invalid():
        raise ValidationError("Bad input", details={"field": "price"})

    @app.get("/limit")
    async def limit():
        raise SubscriptionLimitError("Product limit exceeded. Upgrade to increase limit.")

    @app.get("/stock")
    async def stock():
        raise InsufficientInventoryError("Only 2 left")

    @app.get("/http")
    async def http():
        raise HTTPException(status_code=401, detail="Authentication required")

    @app.post("/body")
    async def body(payload: Payload):
        return payload

    @app.get("/crash")
    async def crash():
        raise RuntimeError("unexpected")

    return TestClient(app, raise_server_exceptions=False)


class TestErrorEnvelope:

    def test_not_found(self, error_client):
        response = error_client.get("/not-found")

        assert response.status_code == 404
        assert response.json() == {"error": {"code": ErrorCode.NOT_FOUND, "message": "Order not found"}}

    def test_validation_error_with_details(self, error_client):
        response = error_client.get("/invalid")

        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"field": "price"}

    def test_subscription_limit_is_403(self, error_client):
        response = error_client.get("/limit")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == ErrorCode.SUBSCRIPTION_LIMIT_REACHED

    def test_insufficient_inventory_is_conflict(self, error_client):
        response = error_client.get("/stock")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == ErrorCode.INSUFFICIENT_INVENTORY

    def test_http_exception_code_from_status(self, error_client):
        response = error_client.get("/http")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == ErrorCode.UNAUTHORIZED

    def test_request_validation_is_400(self, error_client):
        response = error_client.post("/body", json={"quantity": "many"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == ErrorCode.VALIDATION_ERROR
        assert body["error"]["details"]

    def test_unhandled_exception_is_500(self, error_client):
        response = error_client.get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == ErrorCode.INTERNAL_ERROR
