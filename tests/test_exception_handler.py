"""Unit tests for the global exception handlers.

A standalone app with inline routes keeps these free of the database and
the real routers.
"""

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel

from appsynth.errors import MalformedResponse, NotFoundError
from appsynth.middleware import RequestIDMiddleware
from appsynth.middleware.exception_handler import setup_exception_handlers


@pytest.fixture()
def client() -> TestClient:
    app = FastAPI()
    setup_exception_handlers(app)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/unhandled")
    async def _unhandled() -> None:
        raise RuntimeError("something went very wrong")

    @app.get("/http-403")
    async def _http_403() -> None:
        raise HTTPException(status_code=403, detail="Forbidden")

    @app.get("/not-found")
    async def _not_found() -> None:
        raise NotFoundError("Widget not found")

    @app.get("/malformed")
    async def _malformed() -> None:
        raise MalformedResponse()

    class Item(BaseModel):
        name: str
        price: float

    @app.post("/validate")
    async def _validate(item: Item) -> dict:
        return item.model_dump()

    return TestClient(app, raise_server_exceptions=False)


def test_unhandled_exception_is_opaque_500(client):
    resp = client.get("/unhandled", headers={"X-Request-ID": "req-1"})
    assert resp.status_code == 500
    body = resp.json()
    assert body == {
        "error": "Internal Server Error",
        "detail": "Internal server error",
        "request_id": "req-1",
    }
    assert "very wrong" not in resp.text


def test_http_exception_keeps_status(client):
    resp = client.get("/http-403")
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Forbidden"


def test_domain_error_maps_to_its_status(client):
    resp = client.get("/not-found")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Widget not found"


def test_pipeline_error_status(client):
    resp = client.get("/malformed")
    assert resp.status_code == 502


def test_validation_error_lists_fields(client):
    resp = client.post("/validate", json={"name": "x"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "Validation failed"
    assert body["detail"][0]["loc"] == ["body", "price"]
    assert set(body["detail"][0]) == {"loc", "msg", "type"}


def test_request_id_present_on_errors(client):
    resp = client.get("/not-found")
    assert resp.json()["request_id"] == resp.headers["X-Request-ID"]
