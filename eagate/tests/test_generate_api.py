"""
End-to-end tests for POST /generate and POST /webhook.

The LLM is replaced with a fake; everything else (identity, ledger,
entitlements, webhook verification) runs for real against SQLite.
"""
import inspect

import pytest

import eagate.api.billing as billing_api
import eagate.api.generate as generate_api
from eagate.core.errors import StoreUnavailableError, UpstreamError, UpstreamTimeoutError
from eagate.features.generation.service import generate_ea

BODY = {"messages": [{"role": "user", "content": "Moving average crossover EA"}], "language": "mql4"}
EMAIL = "trader@example.com"


class FakeGenerator:
    def __init__(self, error=None):
        self.calls = 0
        self.error = error

    async def __call__(self, messages, language="mql4"):
        self.calls += 1
        if self.error:
            raise self.error
        return f"// {language} EA\nvoid OnTick() {{}}"


@pytest.fixture
def fake_llm(monkeypatch):
    fake = FakeGenerator()
    monkeypatch.setattr(generate_api, "generate_ea", fake)
    return fake


def test_anonymous_free_tier_then_payment_unlocks(client, fake_llm, anon_headers, stripe_event, signed_webhook):
    headers = anon_headers("device-token-0001")

    for expected in (1, 2, 3):
        resp = client.post("/generate", json=BODY, headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["ea_code"].startswith("// mql4 EA")
        assert body["usage"] == {"count": expected, "remaining_free": 3 - expected, "has_paid": False}

    denied = client.post("/generate", json=BODY, headers=headers)
    assert denied.status_code == 402
    error = denied.json()["error"]
    assert error["code"] == "limit_reached"
    assert error["count"] == 3
    assert error["limit"] == 3
    assert fake_llm.calls == 3

    body, sig = signed_webhook(stripe_event("evt_paid", email=EMAIL, client_reference_id="device-token-0001"))
    ack = client.post("/webhook", content=body, headers={"Stripe-Signature": sig})
    assert ack.status_code == 200
    assert ack.json() == {"received": True, "event_id": "evt_paid", "outcome": "applied"}

    resp = client.post("/generate", json=BODY, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["usage"] == {"count": 4, "remaining_free": 0, "has_paid": True}
    assert fake_llm.calls == 4


def test_authenticated_user_paid_by_email(client, fake_llm, auth_headers, stripe_event, signed_webhook, test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "FREE_LIMIT", 1)
    headers = auth_headers(EMAIL)

    assert client.post("/generate", json=BODY, headers=headers).status_code == 200
    assert client.post("/generate", json=BODY, headers=headers).status_code == 402

    body, sig = signed_webhook(stripe_event("evt_paid", email=EMAIL.upper()))
    client.post("/webhook", content=body, headers={"Stripe-Signature": sig})

    assert client.post("/generate", json=BODY, headers=headers).status_code == 200


def test_other_device_is_not_unlocked(client, fake_llm, anon_headers, stripe_event, signed_webhook, test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "FREE_LIMIT", 0)
    body, sig = signed_webhook(stripe_event("evt_paid", email=EMAIL, client_reference_id="device-token-0001"))
    client.post("/webhook", content=body, headers={"Stripe-Signature": sig})

    resp = client.post("/generate", json=BODY, headers=anon_headers("device-token-0002"))
    assert resp.status_code == 402
    assert fake_llm.calls == 0


def test_cancellation_revokes_access(client, fake_llm, auth_headers, stripe_event, signed_webhook, test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "FREE_LIMIT", 0)
    headers = auth_headers(EMAIL)

    for event in (
        stripe_event("evt_paid", email=EMAIL, created=1_700_000_000),
        stripe_event("evt_cancel", "customer.subscription.deleted", email=EMAIL, created=1_700_000_500),
    ):
        body, sig = signed_webhook(event)
        client.post("/webhook", content=body, headers={"Stripe-Signature": sig})

    assert client.post("/generate", json=BODY, headers=headers).status_code == 402


@pytest.mark.parametrize(
    "error,status",
    [(UpstreamError("boom"), 502), (UpstreamTimeoutError("slow"), 504)],
)
def test_llm_failure_does_not_consume_free_request(client, anon_headers, monkeypatch, error, status):
    monkeypatch.setattr(generate_api, "generate_ea", FakeGenerator(error=error))
    headers = anon_headers()

    resp = client.post("/generate", json=BODY, headers=headers)
    assert resp.status_code == status

    usage = client.get("/usage", headers=headers).json()
    assert usage["count"] == 0
    assert usage["remaining_free"] == 3


def test_generate_requires_identity(client, fake_llm):
    resp = client.post("/generate", json=BODY)
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "identity_required"
    assert fake_llm.calls == 0


def test_invalid_token_is_rejected_even_with_anonymous_token(client, fake_llm, anon_headers):
    headers = {"Authorization": "Bearer garbage", **anon_headers()}
    resp = client.post("/generate", json=BODY, headers=headers)
    assert resp.status_code == 401
    assert fake_llm.calls == 0


@pytest.mark.parametrize(
    "payload",
    [
        {"messages": []},
        {"messages": [{"role": "user", "content": "hi"}], "language": "python"},
        {"messages": [{"role": "robot", "content": "hi"}]},
        {"messages": [{"role": "user", "content": ""}]},
        {"messages": [{"role": "system", "content": "only a system prompt"}]},
        {},
    ],
)
def test_generate_rejects_invalid_body(client, fake_llm, anon_headers, payload):
    resp = client.post("/generate", json=payload, headers=anon_headers())
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "validation_error"
    assert fake_llm.calls == 0


@pytest.mark.parametrize(
    "messages",
    [
        [{"role": "user", "content": ""}],
        [{"role": "system", "content": "You are helpful"}, {"role": "system", "content": "Write MQL"}],
    ],
)
def test_unusable_conversation_does_not_consume_free_request(client, fake_llm, anon_headers, messages):
    headers = anon_headers()

    resp = client.post("/generate", json={"messages": messages}, headers=headers)
    assert resp.status_code == 422
    assert fake_llm.calls == 0
    assert client.get("/usage", headers=headers).json()["count"] == 0


def test_language_defaults_to_mql4(client, fake_llm, anon_headers):
    resp = client.post("/generate", json={"messages": BODY["messages"]}, headers=anon_headers())
    assert resp.status_code == 200
    assert resp.json()["ea_code"].startswith("// mql4 EA")


def test_request_and_generator_share_default_language():
    default = inspect.signature(generate_ea).parameters["language"].default
    assert generate_api.GenerateRequest.model_fields["language"].default == default == "mql4"


def test_webhook_bad_signature_returns_400(client, stripe_event, signed_webhook):
    body, _ = signed_webhook(stripe_event("evt_1", email=EMAIL))
    resp = client.post("/webhook", content=body, headers={"Stripe-Signature": "t=1,v1=deadbeef"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "signature_invalid"


def test_webhook_duplicate_is_acknowledged(client, stripe_event, signed_webhook):
    body, sig = signed_webhook(stripe_event("evt_1", email=EMAIL))
    client.post("/webhook", content=body, headers={"Stripe-Signature": sig})

    resp = client.post("/webhook", content=body, headers={"Stripe-Signature": sig})
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "duplicate"


def test_webhook_missing_email_is_acknowledged(client, stripe_event, signed_webhook):
    body, sig = signed_webhook(stripe_event("evt_1"))
    resp = client.post("/webhook", content=body, headers={"Stripe-Signature": sig})
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "missing_identity"


def test_webhook_store_unavailable_asks_for_retry(client, stripe_event, signed_webhook, monkeypatch):
    def unavailable(body, signature):
        raise StoreUnavailableError("database unavailable")

    monkeypatch.setattr(billing_api, "ingest_webhook", unavailable)
    body, sig = signed_webhook(stripe_event("evt_1", email=EMAIL))

    resp = client.post("/webhook", content=body, headers={"Stripe-Signature": sig})
    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "30"
    assert resp.json()["error"]["code"] == "store_unavailable"
