"""Unit tests for the ASGI middleware."""

import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from datadump.core.logging_config import get_correlation_id
from datadump.core.middleware import CorrelationIdMiddleware, ErrorBoundaryMiddleware


async def _boom(request):
    raise RuntimeError("unexpected failure")


async def _whoami(request):
    return JSONResponse({"correlationId": get_correlation_id()})


@pytest.fixture
def client():
    app = Starlette(
        routes=[Route("/boom", _boom), Route("/whoami", _whoami)],
        middleware=[Middleware(CorrelationIdMiddleware), Middleware(ErrorBoundaryMiddleware)],
    )
    return TestClient(app)


def test_correlation_id_visible_to_handlers(client):
    response = client.get("/whoami", headers={"x-correlation-id": "abc-123"})

    assert response.json() == {"correlationId": "abc-123"}
    assert response.headers["x-correlation-id"] == "abc-123"


def test_unhandled_error_returns_json_500(client, monkeypatch):
    monkeypatch.setenv("APP_ENV", "development")

    response = client.get("/boom", headers={"x-correlation-id": "cid-9"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "unexpected failure"
    assert body["code"] == "INTERNAL_ERROR"
    assert body["correlationId"] == "cid-9"
    assert "stackTrace" in body


def test_unhandled_error_is_sanitized_in_production(client, monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")

    body = client.get("/boom").json()

    assert body["error"] == "Internal server error"
    assert "stackTrace" not in body
    assert body["code"] == "INTERNAL_ERROR"


def test_correlation_id_generated_when_missing(client):
    response = client.get("/whoami")

    generated = response.headers["x-correlation-id"]
    assert len(generated) == 36
    assert response.json() == {"correlationId": generated}
