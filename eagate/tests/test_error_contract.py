"""Tests for normalized error responses."""

import logging

from fastapi.testclient import TestClient

from eagate.main import app


def test_validation_error_has_standard_shape():
    client = TestClient(app)
    resp = client.post("/generate", json={"messages": []}, headers={"X-Anonymous-Token": "device-token-0001"})
    assert resp.status_code == 422
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["request_id"] == rid
    assert body["error"]["fields"]


def test_unauthorized_error_normalized():
    client = TestClient(app)
    resp = client.get("/usage", headers={"X-Request-Id": "rid-401"})
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["code"] == "identity_required"
    assert body["error"]["request_id"] == "rid-401"
    assert body["detail"] == body["error"]["message"]


def test_not_found_normalized():
    client = TestClient(app)
    resp = client.get("/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_request_id_in_response_and_logs(caplog):
    client = TestClient(app)
    with caplog.at_level(logging.INFO, logger="eagate"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
