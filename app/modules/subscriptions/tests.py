"""
Tests para suscripciones PayPal: alta y webhooks contra un PayPal simulado.
"""
import json

import httpx
import pytest

from app.main import app
from app.modules.subscriptions.models import UserAccount, WebhookEventType
from app.modules.subscriptions.paypal import PayPalClient
from app.modules.subscriptions.router import get_paypal_client

WEBHOOK_HEADERS = {
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-cert-url": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-1",
    "paypal-transmission-id": "tx-1",
    "paypal-transmission-sig": "c2lnbmF0dXJl",
    "paypal-transmission-time": "2024-03-01T10:00:00Z",
}


class FakePayPal:
    """Transporte simulado con las rutas que usa PayPalClient."""

    def __init__(self, verification="SUCCESS", subscription=None):
        self.verification = verification
        self.subscription = subscription or {
            "id": "I-SUB-1",
            "links": [{"rel": "approve", "href": "https://paypal.test/approve/I-SUB-1"}],
        }
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-token"})
        if path == "/v1/billing/subscriptions":
            return httpx.Response(201, json=self.subscription)
        if path == "/v1/notifications/verify-webhook-signature":
            return httpx.Response(200, json={"verification_status": self.verification})
        return httpx.Response(404, json={"message": "unknown"})

    def body_of(self, path):
        return next(json.loads(r.content) for r in self.requests if r.url.path == path)


def mount_paypal(settings, fake):
    paypal = PayPalClient(settings, client=httpx.Client(transport=httpx.MockTransport(fake)))
    app.dependency_overrides[get_paypal_client] = lambda: paypal
    return paypal


def event(event_type, **resource):
    return {"event_type": event_type, "resource": resource}


class TestWebhookEventType:

    def test_parse(self):
        assert WebhookEventType.parse("BILLING.SUBSCRIPTION.ACTIVATED") is WebhookEventType.ACTIVATED
        assert WebhookEventType.parse("PAYMENT.SALE.COMPLETED") is WebhookEventType.OTHER
        assert WebhookEventType.parse(None) is WebhookEventType.OTHER

    def test_suspending_events(self):
        assert WebhookEventType.PAYMENT_FAILED.suspends
        assert WebhookEventType.CANCELLED.suspends
        assert not WebhookEventType.ACTIVATED.suspends
        assert not WebhookEventType.UPDATED.suspends


class TestCreateSubscription:

    def test_creates_pending_plan(self, client, settings, auth_headers, db_session):
        fake = FakePayPal()
        mount_paypal(settings, fake)

        response = client.post("/paypal/create-subscription", json={"planCode": "PLUS"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {
            "approvalUrl": "https://paypal.test/approve/I-SUB-1",
            "subscriptionId": "I-SUB-1",
        }

        sent = fake.body_of("/v1/billing/subscriptions")
        assert sent["plan_id"] == "P-PLUS"
        assert sent["custom_id"] == "user-1:PLUS"
        assert sent["application_context"]["return_url"] == "https://app.contapp.test/dashboard/plan?paypal=success"
        assert sent["application_context"]["brand_name"] == "ContApp Peru"

        account = db_session.get(UserAccount, "user-1")
        assert account.pending_plan == "PLUS"
        assert account.paypal_subscription_id == "I-SUB-1"
        assert account.paypal_plan_id == "P-PLUS"
        assert account.status is None

    @pytest.mark.parametrize("plan_code", ["FREE", "", None])
    def test_invalid_plan(self, client, settings, auth_headers, plan_code):
        fake = FakePayPal()
        mount_paypal(settings, fake)

        response = client.post("/paypal/create-subscription", json={"planCode": plan_code}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid plan"}
        assert fake.requests == []

    def test_missing_approval_link(self, client, settings, auth_headers):
        mount_paypal(settings, FakePayPal(subscription={"id": "I-SUB-2", "links": []}))

        response = client.post("/paypal/create-subscription", json={"planCode": "PRO"}, headers=auth_headers)
        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}


class TestWebhook:

    def test_rejects_unverified(self, client, settings):
        mount_paypal(settings, FakePayPal(verification="FAILURE"))
        response = client.post(
            "/paypal/webhook",
            json=event("BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB-1", custom_id="user-1:PRO"),
            headers=WEBHOOK_HEADERS,
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Webhook not verified"}

    def test_rejects_missing_signature_headers(self, client, settings):
        fake = FakePayPal()
        mount_paypal(settings, fake)
        response = client.post("/paypal/webhook", json=event("BILLING.SUBSCRIPTION.ACTIVATED"))
        assert response.status_code == 400
        assert fake.requests == []

    def test_activation_sets_plan(self, client, settings, db_session):
        fake = FakePayPal()
        mount_paypal(settings, fake)

        response = client.post(
            "/paypal/webhook",
            json=event("BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB-1", plan_id="P-PLUS", custom_id="user-1:PRO"),
            headers=WEBHOOK_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        verification = fake.body_of("/v1/notifications/verify-webhook-signature")
        assert verification["webhook_id"] == "WH-TEST"
        assert verification["transmission_id"] == "tx-1"

        account = db_session.get(UserAccount, "user-1")
        assert account.status == "ACTIVE"
        # El plan configurado en PayPal tiene prioridad sobre custom_id
        assert account.plan == "PLUS"
        assert account.pending_plan is None

    def test_activation_with_unknown_plan_id_uses_custom_plan(self, client, settings, db_session):
        mount_paypal(settings, FakePayPal())
        client.post(
            "/paypal/webhook",
            json=event("BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB-1", plan_id="P-OLD", custom_id="user-1:PLUS"),
            headers=WEBHOOK_HEADERS,
        )
        assert db_session.get(UserAccount, "user-1").plan == "PLUS"

    def test_suspension_by_subscription_id(self, client, settings, db_session):
        db_session.add(UserAccount(uid="user-1", plan="PRO", status="ACTIVE", paypal_subscription_id="I-SUB-9"))
        db_session.commit()
        mount_paypal(settings, FakePayPal())

        response = client.post(
            "/paypal/webhook",
            json=event("BILLING.SUBSCRIPTION.PAYMENT.FAILED", id="I-SUB-9", plan_id="P-PRO"),
            headers=WEBHOOK_HEADERS,
        )

        assert response.json() == {"ok": True}
        db_session.expire_all()
        account = db_session.get(UserAccount, "user-1")
        assert account.status == "SUSPENDED"
        assert account.plan == "PRO"

    def test_updated_only_activates_when_active(self, client, settings, db_session):
        db_session.add(UserAccount(uid="user-1", status="SUSPENDED", pending_plan="PRO"))
        db_session.commit()
        mount_paypal(settings, FakePayPal())

        client.post(
            "/paypal/webhook",
            json=event("BILLING.SUBSCRIPTION.UPDATED", id="I-SUB-1", custom_id="user-1:PRO", status="APPROVAL_PENDING"),
            headers=WEBHOOK_HEADERS,
        )
        db_session.expire_all()
        account = db_session.get(UserAccount, "user-1")
        assert account.status == "SUSPENDED"
        assert account.pending_plan == "PRO"
        assert account.paypal_subscription_id == "I-SUB-1"

    def test_unknown_account_is_ignored(self, client, settings):
        mount_paypal(settings, FakePayPal())
        response = client.post(
            "/paypal/webhook",
            json=event("BILLING.SUBSCRIPTION.CANCELLED", id="I-UNKNOWN"),
            headers=WEBHOOK_HEADERS,
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True, "ignored": True}
