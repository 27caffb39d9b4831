"""x-request-id propagation through RequestIdMiddleware."""

import logging

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from magicpaws.core.logging import get_request_id
from magicpaws.core.middleware.request_id import RequestIdMiddleware


@pytest.fixture
def echo_client():
    echo = FastAPI()
    echo.add_middleware(RequestIdMiddleware)

    @echo.get("/echo")
    async def show(request: Request):
        return {"state": request.state.request_id, "context": get_request_id()}

    return TestClient(echo)


def test_minted_id_matches_state_and_context(echo_client):
    resp = echo_client.get("/echo")
    rid = resp.headers["x-request-id"]
    assert rid
    assert resp.json() == {"state": rid, "context": rid}


def test_caller_id_is_reused(echo_client):
    resp = echo_client.get("/echo", headers={"X-Request-Id": "booking-rid-7"})
    assert resp.headers["x-request-id"] == "booking-rid-7"
    assert resp.json()["state"] == "booking-rid-7"


def test_context_reset_after_response(echo_client):
    echo_client.get("/echo", headers={"X-Request-Id": "rid-gone"})
    assert get_request_id() != "rid-gone"


def test_completion_is_logged_with_latency_bucket(echo_client, caplog):
    with caplog.at_level(logging.INFO, logger="magicpaws"):
        echo_client.get("/echo", headers={"X-Request-Id": "rid-logged"})
    record = next(r for r in caplog.records if r.getMessage() == "request.complete")
    assert record.path == "/echo"
    assert record.status == 200
    assert record.latency_bucket.endswith("ms")
