from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from alibi_backend.app.billing import CheckoutSession, WebhookAction, WebhookOutcome
from alibi_backend.app.config import load_billing_config
from alibi_backend.app.entitlements import AuthenticityError, ConfigurationError, GatewayError, RestoreResult
from alibi_backend.app.routes import billing as billing_routes


class FakeBillingService:
    def __init__(self) -> None:
        self.checkouts: List[Dict[str, Any]] = []
        self.webhooks: List[Dict[str, Any]] = []
        self.checkout_error: Optional[Exception] = None
        self.webhook_error: Optional[Exception] = None

    def create_checkout_session(self, *, pack_id, client_key, base_url) -> CheckoutSession:
        if self.checkout_error is not None:
            raise self.checkout_error
        self.checkouts.append({"pack_id": pack_id, "client_key": client_key, "base_url": base_url})
        return CheckoutSession(
            session_id="cs_1",
            checkout_url="https://checkout.example/cs_1",
            client_key=client_key,
            pack_id=pack_id,
            mode="payment",
        )

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        self.webhooks.append({"payload": payload, "signature": signature})
        if self.webhook_error is not None:
            raise self.webhook_error
        return WebhookOutcome(event_type="checkout.session.completed", action=WebhookAction.GRANTED)


class FakeRestoreService:
    def __init__(self, result: RestoreResult) -> None:
        self.result = result
        self.keys: List[Optional[str]] = []

    def restore(self, client_key: Optional[str]) -> RestoreResult:
        self.keys.append(client_key)
        return self.result


@pytest.fixture
def billing_service() -> FakeBillingService:
    return FakeBillingService()


@pytest.fixture
def restore_service() -> FakeRestoreService:
    return FakeRestoreService(RestoreResult(packs=("work", "gamer"), subscription_active=True))


@pytest.fixture
def client(monkeypatch, billing_service, restore_service) -> TestClient:
    config = load_billing_config(
        env={
            "STRIPE_SECRET_KEY": "sk_test",
            "PRICE_WORK": "price_work",
            "APP_BASE_URL": "https://alibi.example",
        }
    )
    monkeypatch.setattr(billing_routes, "get_billing_config", lambda: config)
    monkeypatch.setattr(billing_routes, "get_billing_service", lambda: billing_service)
    monkeypatch.setattr(billing_routes, "get_restore_service", lambda: restore_service)

    app = FastAPI()
    app.include_router(billing_routes.router)
    return TestClient(app)


def test_health_reports_configuration(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is False
    assert body["stripeConfigured"] is True
    assert body["webhookSecretConfigured"] is False
    assert body["baseUrl"] == "https://alibi.example"
    assert "PRICE_DATE" in body["missingEnvVars"]
    assert "PRICE_WORK" not in body["missingEnvVars"]


def test_checkout_uses_client_key_header(client, billing_service):
    response = client.post(
        "/api/create-checkout-session",
        json={"packId": "work"},
        headers={"X-User-Key": "client-1"},
    )

    assert response.status_code == 200
    assert response.json() == {"url": "https://checkout.example/cs_1"}
    assert "X-Set-User-Key" not in response.headers
    assert billing_service.checkouts[0]["client_key"] == "client-1"
    assert billing_service.checkouts[0]["base_url"] == "https://alibi.example"


def test_checkout_issues_client_key_when_missing(client, billing_service):
    response = client.post("/api/create-checkout-session", json={"packId": "work"})

    assert response.status_code == 200
    issued = response.headers["X-Set-User-Key"]
    assert issued
    assert billing_service.checkouts[0]["client_key"] == issued


@pytest.mark.parametrize("body", [{"packId": "platinum"}, {}])
def test_checkout_rejects_unknown_pack(client, billing_service, body):
    response = client.post("/api/create-checkout-session", json=body, headers={"X-User-Key": "client-1"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid pack ID"
    assert billing_service.checkouts == []


def test_checkout_reports_missing_configuration(client, billing_service):
    billing_service.checkout_error = ConfigurationError("Price ID not configured for date (PRICE_DATE)")

    response = client.post("/api/create-checkout-session", json={"packId": "date"}, headers={"X-User-Key": "c"})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "not_configured"


def test_checkout_reports_gateway_failure(client, billing_service):
    billing_service.checkout_error = GatewayError("stripe down")

    response = client.post("/api/create-checkout-session", json={"packId": "work"}, headers={"X-User-Key": "c"})

    assert response.status_code == 502


def test_webhook_passes_raw_body_and_signature(client, billing_service):
    raw = b'{"id": "evt_1",  "type": "checkout.session.completed"}'

    response = client.post("/api/stripe-webhook", content=raw, headers={"Stripe-Signature": "t=1,v1=abc"})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert billing_service.webhooks == [{"payload": raw, "signature": "t=1,v1=abc"}]


def test_webhook_rejects_bad_signature(client, billing_service):
    billing_service.webhook_error = AuthenticityError("Webhook signature verification failed")

    response = client.post("/api/stripe-webhook", content=b"{}", headers={"Stripe-Signature": "forged"})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_signature"


def test_webhook_without_secret_is_rejected(client, billing_service):
    billing_service.webhook_error = ConfigurationError("Webhook secret not configured")

    response = client.post("/api/stripe-webhook", content=b"{}")

    assert response.status_code == 400
    assert billing_service.webhooks[0]["signature"] is None


def test_restore_returns_entitlements(client, restore_service):
    response = client.get("/api/restore", headers={"X-User-Key": "client-1"})

    assert response.status_code == 200
    assert response.json() == {"packs": ["work", "gamer"], "subscriptionActive": True}
    assert restore_service.keys == ["client-1"]


def test_restore_without_key_delegates_empty_key(client, restore_service):
    restore_service.result = RestoreResult.empty()

    response = client.get("/api/restore")

    assert response.json() == {"packs": [], "subscriptionActive": False}
    assert restore_service.keys == [None]


def test_success_redirects_with_session_id(client):
    response = client.get("/success", params={"session_id": "cs_1"}, follow_redirects=False)

    assert response.status_code == 307
    assert response.headers["location"] == "/success.html?cs=cs_1"
