# eagate/conftest.py
import hashlib
import hmac
import json
import os
import time

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("ENV", "test")

TEST_JWT_SECRET = "test-secret-key-for-eagate"
TEST_WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope="function", autouse=True)
def test_db(tmp_path):
    """
    Fresh SQLite database per test.

    A file (not :memory:) so worker threads share the same database.
    """
    from eagate.core.database import init_engine, create_all_tables, drop_all_tables

    engine = init_engine(f"sqlite:///{tmp_path / 'eagate_test.db'}")
    create_all_tables()
    yield engine
    drop_all_tables()
    engine.dispose()


@pytest.fixture(scope="function", autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings: no outbound credentials, known secrets."""
    from eagate.core.config import settings

    monkeypatch.setattr(settings, "FREE_LIMIT", 3)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)
    monkeypatch.setattr(settings, "STRIPE_PRICE_ID", None)
    monkeypatch.setattr(settings, "GROQ_API_KEY", None)
    monkeypatch.setattr(settings, "CLERK_SECRET_KEY", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "ADMIN_KEY", None)
    monkeypatch.setattr(settings, "ADMIN_AUTH_MODE", "hybrid")
    monkeypatch.setattr(settings, "OUTBOUND_TIMEOUT_SECONDS", 5.0)
    yield settings


@pytest.fixture
def client():
    from eagate.main import app

    return TestClient(app)


@pytest.fixture
def stripe_event():
    """Build a Stripe-shaped event dict."""
    def _make(
        event_id: str,
        event_type: str = "checkout.session.completed",
        email=None,
        created: int = 1_700_000_000,
        client_reference_id=None,
        data_object=None,
    ):
        obj = dict(data_object or {"object": "checkout.session"})
        if email is not None:
            obj["customer_details"] = {"email": email}
        if client_reference_id is not None:
            obj["client_reference_id"] = client_reference_id
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": created,
            "data": {"object": obj},
        }

    return _make


@pytest.fixture
def sign_payload():
    """Produce a Stripe-Signature header (t=<ts>,v1=<hmac>) for a raw body."""
    def _sign(body: bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp=None) -> str:
        ts = int(timestamp if timestamp is not None else time.time())
        signed = f"{ts}.{body.decode('utf-8')}".encode("utf-8")
        digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={ts},v1={digest}"

    return _sign


@pytest.fixture
def signed_webhook(sign_payload):
    """Serialize an event and return (body, signature_header)."""
    def _build(event: dict):
        body = json.dumps(event).encode("utf-8")
        return body, sign_payload(body)

    return _build


@pytest.fixture
def auth_headers():
    """Authorization header for a Clerk-style HS256 test token."""
    from eagate.core.clerk_auth import create_test_jwt

    def _headers(email: str = "trader@example.com", **kwargs):
        token = create_test_jwt(email=email, secret=TEST_JWT_SECRET, **kwargs)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def anon_headers():
    def _headers(token: str = "device-token-0001"):
        return {"X-Anonymous-Token": token}

    return _headers
