"""Tests for structured logging and request_id propagation."""

import json
import logging

from fastapi.testclient import TestClient

from magicpaws.core.logging import JsonFormatter, RequestIdFilter, log_event, request_id_ctx_var
from magicpaws.main import app


def test_request_id_in_response_and_logs(caplog):
    client = TestClient(app)
    with caplog.at_level(logging.INFO, logger="magicpaws"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert len({r.request_id for r in records}) == 1


def test_request_id_in_error_response():
    client = TestClient(app)
    response = client.get("/api/content/tiers/does-not-exist")
    rid = response.headers.get("x-request-id")
    assert response.status_code == 404
    assert rid
    assert response.json()["error"]["request_id"] == rid


def test_json_formatter_includes_context_and_extras():
    token = request_id_ctx_var.set("rid-json")
    try:
        record = logging.LogRecord("magicpaws", logging.INFO, __file__, 1, "booking.created", None, None)
        record.user_id = "user_alice"
        RequestIdFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
    finally:
        request_id_ctx_var.reset(token)

    assert payload["message"] == "booking.created"
    assert payload["request_id"] == "rid-json"
    assert payload["user_id"] == "user_alice"


def test_log_event_truncates_long_values(caplog):
    with caplog.at_level(logging.INFO, logger="magicpaws"):
        log_event("info", "test.event", user_id="u1", blob="x" * 2000)
    record = next(r for r in caplog.records if r.getMessage() == "test.event")
    assert record.user_id == "u1"
    assert len(record.blob) < 2000
