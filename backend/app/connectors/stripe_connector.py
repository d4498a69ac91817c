"""
Stripe REST Connector
Payment intents, refunds, subscription checkout and webhook verification

Talks to the Stripe API directly over httpx (form-encoded requests,
bearer secret key). Webhook signatures are checked with hmac locally.

Author: Platform Team
Date: 2025-11-20
"""
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.errors import PaymentError

logger = logging.getLogger(__name__)

# Seconds a signed webhook timestamp may differ from now
SIGNATURE_TOLERANCE = 300


class WebhookSignatureError(ValueError):
    """Stripe-Signature header missing, malformed, stale or not matching"""


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """
    Stripe expects nested form fields:
    {"metadata": {"orderId": 1}} -> {"metadata[orderId]": "1"}
    """
    flat = {}
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(_flatten(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                if isinstance(item, dict):
                    flat.update(_flatten(item, f"{name}[{index}]"))
                else:
                    flat[f"{name}[{index}]"] = str(item)
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        else:
            flat[name] = str(value)
    return flat


def to_cents(amount) -> int:
    return int(round(float(amount) * 100))


def verify_webhook_signature(payload: bytes, signature_header: Optional[str], secret: str,
                             tolerance: int = SIGNATURE_TOLERANCE, now: Optional[float] = None) -> dict:
    """
    Verify a Stripe webhook and return the parsed event.

    Header format: "t=1700000000,v1=<hex>[,v1=<hex>...]". The signed
    payload is "{t}.{raw body}" with HMAC-SHA256 and the endpoint secret.

    Raises:
        WebhookSignatureError: on any verification failure
    """
    if not signature_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")

    timestamp = None
    signatures = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if not timestamp or not signatures:
        raise WebhookSignatureError("Malformed Stripe-Signature header")

    try:
        timestamp_value = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("Invalid signature timestamp")

    current = now if now is not None else time.time()
    if abs(current - timestamp_value) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    if isinstance(payload, str):
        payload = payload.encode("utf-8")

    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()

    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Signature mismatch")

    try:
        return json.loads(payload)
    except ValueError:
        raise WebhookSignatureError("Webhook body is not valid JSON")


class StripeConnector:
    """
    Connector for the Stripe REST API

    Handles:
    - Payment intents for storefront checkout
    - Refunds
    - Subscription checkout sessions and cancellation
    """

    def __init__(self, secret_key: str = None, api_base: str = None):
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        if not self.secret_key:
            raise ValueError("Stripe not configured. Set STRIPE_SECRET_KEY")

        self.api_base = (api_base or settings.STRIPE_API_BASE).rstrip("/")
        self.headers = {
            'Authorization': f'Bearer {self.secret_key}',
        }

    async def _request(self, method: str, endpoint: str, data: Optional[Dict] = None,
                       idempotency_key: Optional[str] = None) -> Dict:
        url = f"{self.api_base}{endpoint}"
        headers = dict(self.headers)
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key

        async with httpx.AsyncClient() as client:
            try:
                response = await client.request(
                    method,
                    url,
                    data=_flatten(data or {}),
                    headers=headers,
                    timeout=30.0
                )
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                body = {}
                try:
                    body = e.response.json().get('error', {})
                except ValueError:
                    pass
                logger.error(f"Stripe request failed: {e.response.status_code} {endpoint} - {body}")
                raise PaymentError(
                    body.get('message') or f"Stripe request failed with status {e.response.status_code}",
                    details={"stripeCode": body.get('code'), "type": body.get('type')}
                )
            except httpx.HTTPError as e:
                logger.error(f"Stripe request error on {endpoint}: {e}")
                raise PaymentError("Payment provider unavailable")

    async def create_payment_intent(self, amount, currency: str, metadata: Dict,
                                    receipt_email: Optional[str] = None,
                                    idempotency_key: Optional[str] = None) -> Dict:
        """
        Create a PaymentIntent

        Args:
            amount: Decimal amount in major units; converted to cents
            currency: ISO currency code
            metadata: orderId, orderNumber, storeId
        """
        return await self._request("POST", "/payment_intents", {
            "amount": to_cents(amount),
            "currency": currency.lower(),
            "metadata": metadata,
            "receipt_email": receipt_email,
            "automatic_payment_methods": {"enabled": True},
        }, idempotency_key=idempotency_key)

    async def create_refund(self, payment_intent_id: str, amount=None,
                            reason: Optional[str] = None, metadata: Optional[Dict] = None) -> Dict:
        data = {"payment_intent": payment_intent_id, "metadata": metadata}
        if amount is not None:
            data["amount"] = to_cents(amount)
        if reason:
            data["reason"] = reason
        return await self._request("POST", "/refunds", data)

    async def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict,
        customer_id: Optional[str] = None,
        customer_email: Optional[str] = None,
        trial_days: int = 0
    ) -> Dict:
        """Subscription-mode Checkout Session for a plan price"""
        data = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if trial_days:
            data["subscription_data"]["trial_period_days"] = trial_days
        if customer_id:
            data["customer"] = customer_id
        elif customer_email:
            data["customer_email"] = customer_email
        return await self._request("POST", "/checkout/sessions", data)

    async def cancel_subscription(self, subscription_id: str, at_period_end: bool = True) -> Dict:
        if at_period_end:
            return await self._request(
                "POST", f"/subscriptions/{subscription_id}", {"cancel_at_period_end": True}
            )
        return await self._request("DELETE", f"/subscriptions/{subscription_id}")
