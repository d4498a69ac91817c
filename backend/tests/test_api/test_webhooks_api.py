"""
Stripe and SSLCommerz webhook endpoints
"""
import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock, Mock

import pytest

from app.api.deps import get_payment_service, get_subscription_service, get_webhook_idempotency
from app.core.config import settings
from app.core.errors import InternalError, ValidationError

SECRET = "whsec_test_secret"

EVENT = json.dumps({
    "id": "evt_1",
    "type": "payment_intent.succeeded",
    "data": {"object": {"id": "pi_1", "payment_method_types": ["card"]}},
}).encode()


def sign(payload: bytes, secret: str = SECRET) -> str:
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def run_handler(source, entity, event_id, handler):
    return True, handler()


@pytest.fixture
def secrets(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", SECRET)
    monkeypatch.setattr(settings, "STRIPE_SUBSCRIPTION_WEBHOOK_SECRET", SECRET)
    monkeypatch.setattr(settings, "SSLCOMMERZ_STORE_PASSWORD", "store-pass")


@pytest.fixture
def idempotency(override):
    guard = override(get_webhook_idempotency, Mock())
    guard.process_once.side_effect = run_handler
    return guard


class TestStripeWebhook:

    def test_missing_signature(self, client, secrets, idempotency):
        response = client.post("/api/v1/webhooks/stripe", content=EVENT)

        assert response.status_code == 400
        idempotency.process_once.assert_not_called()

    def test_bad_signature(self, client, secrets, idempotency):
        response = client.post("/api/v1/webhooks/stripe", content=EVENT,
                               headers={"Stripe-Signature": sign(EVENT, secret="whsec_wrong")})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"

    def test_missing_secret_is_server_error(self, client, monkeypatch, idempotency):
        monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "")

        response = client.post("/api/v1/webhooks/stripe", content=EVENT,
                               headers={"Stripe-Signature": sign(EVENT)})

        assert response.status_code == 500

    def test_valid_event_is_applied(self, client, override, secrets, idempotency):
        payments = override(get_payment_service, Mock())
        payments.handle_stripe_event.return_value = "paid"

        response = client.post("/api/v1/webhooks/stripe", content=EVENT,
                               headers={"Stripe-Signature": sign(EVENT)})

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "paid"}
        assert idempotency.process_once.call_args[0][:3] == ("stripe", "payment", "evt_1")
        assert payments.handle_stripe_event.call_args[0][0]["id"] == "evt_1"

    def test_duplicate_event(self, client, override, secrets, idempotency):
        payments = override(get_payment_service, Mock())
        idempotency.process_once.side_effect = None
        idempotency.process_once.return_value = (False, None)

        response = client.post("/api/v1/webhooks/stripe", content=EVENT,
                               headers={"Stripe-Signature": sign(EVENT)})

        assert response.json() == {"received": True, "duplicate": True}
        payments.handle_stripe_event.assert_not_called()

    def test_handler_failure_asks_for_retry(self, client, override, secrets, idempotency):
        payments = override(get_payment_service, Mock())
        payments.handle_stripe_event.side_effect = RuntimeError("database unavailable")

        response = client.post("/api/v1/webhooks/stripe", content=EVENT,
                               headers={"Stripe-Signature": sign(EVENT)})

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "WEBHOOK_PROCESSING_FAILED"

    def test_subscription_events_use_their_own_scope(self, client, override, secrets, idempotency):
        subscriptions = override(get_subscription_service, Mock())
        subscriptions.handle_stripe_event.return_value = "canceled"

        response = client.post("/api/v1/webhooks/stripe/subscription", content=EVENT,
                               headers={"Stripe-Signature": sign(EVENT)})

        assert response.json()["outcome"] == "canceled"
        assert idempotency.process_once.call_args[0][1] == "subscription"

    def test_subscription_endpoint_status(self, client):
        response = client.get("/api/v1/webhooks/stripe/subscription")

        assert response.json() == {"status": "ok", "endpoint": "stripe-subscription-webhook"}


def sign_ipn(form: dict, password: str = "store-pass") -> dict:
    fields = {key: value for key, value in form.items() if key not in ("verify_sign", "verify_key")}
    pairs = "&".join(f"{key}={fields[key]}" for key in sorted(fields))
    password_hash = hashlib.md5(password.encode()).hexdigest()
    digest = hashlib.md5(f"{pairs}&store_passwd={password_hash}".encode()).hexdigest()
    return {**form, "verify_sign": digest, "verify_key": ",".join(sorted(fields))}


class TestSSLCommerzIpn:

    FORM = sign_ipn({"tran_id": "1-ORD-00042", "val_id": "val_1", "status": "VALID"})

    @pytest.fixture
    def async_idempotency(self, idempotency):
        async def run(source, entity, event_id, handler):
            return True, await handler()

        idempotency.process_once_async = AsyncMock(side_effect=run)
        return idempotency

    def test_missing_verify_sign(self, client, secrets, async_idempotency):
        form = {key: value for key, value in self.FORM.items() if key != "verify_sign"}

        response = client.post("/api/v1/webhooks/sslcommerz/ipn", data=form)

        assert response.status_code == 400
        async_idempotency.process_once_async.assert_not_called()

    def test_valid_ipn(self, client, override, secrets, async_idempotency):
        payments = override(get_payment_service, Mock())
        payments.handle_sslcommerz_ipn = AsyncMock(return_value="paid")

        response = client.post("/api/v1/webhooks/sslcommerz/ipn", data=self.FORM)

        assert response.json() == {"received": True, "outcome": "paid"}
        assert async_idempotency.process_once_async.call_args[0][2] == "1-ORD-00042:val_1|VALID"

    def test_forged_ipn_is_rejected_before_claiming(self, client, override, secrets, async_idempotency):
        payments = override(get_payment_service, Mock())
        payments.handle_sslcommerz_ipn = AsyncMock(return_value="paid")
        forged = {**self.FORM, "status": "FAILED"}

        response = client.post("/api/v1/webhooks/sslcommerz/ipn", data=forged)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"
        async_idempotency.process_once_async.assert_not_called()
        payments.handle_sslcommerz_ipn.assert_not_called()

    def test_status_change_is_a_new_event(self, client, override, secrets, async_idempotency):
        payments = override(get_payment_service, Mock())
        payments.handle_sslcommerz_ipn = AsyncMock(return_value="failed")
        failed = sign_ipn({"tran_id": "1-ORD-00042", "val_id": "val_1", "status": "FAILED"})

        client.post("/api/v1/webhooks/sslcommerz/ipn", data=failed)

        assert async_idempotency.process_once_async.call_args[0][2] == "1-ORD-00042:val_1|FAILED"

    def test_handler_client_error_is_passed_through(self, client, override, secrets, async_idempotency):
        payments = override(get_payment_service, Mock())
        payments.handle_sslcommerz_ipn = AsyncMock(
            side_effect=ValidationError("Unknown transaction", code="VALIDATION_ERROR")
        )

        response = client.post("/api/v1/webhooks/sslcommerz/ipn", data=self.FORM)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_gateway_outage_asks_for_retry(self, client, override, secrets, async_idempotency):
        payments = override(get_payment_service, Mock())
        payments.handle_sslcommerz_ipn = AsyncMock(
            side_effect=InternalError("SSLCommerz validation unavailable", code="GATEWAY_UNAVAILABLE")
        )

        response = client.post("/api/v1/webhooks/sslcommerz/ipn", data=self.FORM)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "WEBHOOK_PROCESSING_FAILED"


class TestWebhookEventStatus:

    def test_requires_super_admin(self, client, store_admin_headers, idempotency):
        response = client.get("/api/v1/webhooks/events/stripe/payment/evt_1", headers=store_admin_headers)

        assert response.status_code == 403
        idempotency.is_processed.assert_not_called()

    def test_reports_processed_event(self, client, super_admin_headers, idempotency):
        idempotency.is_processed.return_value = True

        response = client.get("/api/v1/webhooks/events/stripe/payment/evt_1", headers=super_admin_headers)

        assert response.status_code == 200
        assert response.json()["processed"] is True
        idempotency.is_processed.assert_called_once_with("stripe", "payment", "evt_1")

    def test_unknown_scope(self, client, super_admin_headers, idempotency):
        response = client.get("/api/v1/webhooks/events/paypal/payment/evt_1", headers=super_admin_headers)

        assert response.status_code == 404
