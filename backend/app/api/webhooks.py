"""
Payment provider webhooks

Each delivery is verified against the provider signature, then applied at
most once through the webhook idempotency guard. A failing handler releases
its claim and answers 500 so the provider retries.
"""
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Request, status

from app.api.deps import get_payment_service, get_subscription_service, get_webhook_idempotency
from app.connectors.sslcommerz_connector import verify_ipn_signature
from app.connectors.stripe_connector import WebhookSignatureError, verify_webhook_signature
from app.core.auth import Role, TokenUser, require_role
from app.core.config import settings
from app.core.errors import AppError, ErrorCode, error_response
from app.services.idempotency_service import WebhookIdempotencyService
from app.services.payment_service import PaymentService
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter()

WEBHOOK_FAILED = "WEBHOOK_PROCESSING_FAILED"

WEBHOOK_SCOPES = {
    "stripe": ("payment", "subscription"),
    "sslcommerz": ("ipn",),
}


def sslcommerz_event_id(payload: dict) -> str:
    """tran_id:val_id|status, so a status change for the same validation is a new event"""
    return f"{payload.get('tran_id')}:{payload.get('val_id') or ''}|{(payload.get('status') or '').upper()}"


def _verify_stripe(payload: bytes, signature: Optional[str], secret: str):
    """Returns (event, None) or (None, error response)"""
    if not signature:
        return None, error_response(status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR,
                                    "Missing Stripe-Signature header")
    if not secret:
        logger.error("Stripe webhook secret is not configured")
        return None, error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR,
                                    "Webhook secret not configured")
    try:
        return verify_webhook_signature(payload, signature, secret), None
    except WebhookSignatureError as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        return None, error_response(status.HTTP_400_BAD_REQUEST, "INVALID_SIGNATURE", str(e))


def _process_stripe_event(event: dict, entity: str, handler: Callable[[dict], Optional[str]],
                          idempotency: WebhookIdempotencyService):
    event_id = event.get("id")
    if not event_id:
        return error_response(status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, "Event id missing")

    try:
        processed, outcome = idempotency.process_once(
            "stripe", entity, event_id, lambda: handler(event)
        )
    except Exception as e:
        logger.exception(f"Stripe {entity} webhook {event_id} ({event.get('type')}) failed: {e}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, WEBHOOK_FAILED,
                              "Webhook processing failed")

    if not processed:
        return {"received": True, "duplicate": True}

    logger.info(f"Stripe {entity} webhook {event_id} ({event.get('type')}) -> {outcome}")
    return {"received": True, "outcome": outcome}


@router.post("/stripe")
async def stripe_payments_webhook(
    request: Request,
    payments: PaymentService = Depends(get_payment_service),
    idempotency: WebhookIdempotencyService = Depends(get_webhook_idempotency)
):
    """PaymentIntent and refund events for storefront orders"""
    payload = await request.body()
    event, failure = _verify_stripe(payload, request.headers.get("stripe-signature"),
                                    settings.STRIPE_WEBHOOK_SECRET)
    if failure is not None:
        return failure

    return _process_stripe_event(event, "payment", payments.handle_stripe_event, idempotency)


@router.post("/stripe/subscription")
async def stripe_subscription_webhook(
    request: Request,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    idempotency: WebhookIdempotencyService = Depends(get_webhook_idempotency)
):
    """Subscription lifecycle and invoice events for store plans"""
    payload = await request.body()
    event, failure = _verify_stripe(payload, request.headers.get("stripe-signature"),
                                    settings.STRIPE_SUBSCRIPTION_WEBHOOK_SECRET)
    if failure is not None:
        return failure

    return _process_stripe_event(event, "subscription", subscriptions.handle_stripe_event, idempotency)


@router.get("/stripe/subscription")
async def stripe_subscription_webhook_status():
    return {"status": "ok", "endpoint": "stripe-subscription-webhook"}


@router.get("/events/{source}/{entity}/{event_id}")
async def webhook_event_status(
    source: str,
    entity: str,
    event_id: str,
    user: TokenUser = Depends(require_role(Role.SUPER_ADMIN)),
    idempotency: WebhookIdempotencyService = Depends(get_webhook_idempotency)
):
    """Whether a provider event has been fully processed (support lookups)"""
    if entity not in WEBHOOK_SCOPES.get(source, ()):
        return error_response(status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND,
                              f"Unknown webhook scope {source}/{entity}")
    return {
        "source": source,
        "entity": entity,
        "eventId": event_id,
        "processed": idempotency.is_processed(source, entity, event_id),
    }


@router.post("/sslcommerz/ipn")
async def sslcommerz_ipn(
    request: Request,
    payments: PaymentService = Depends(get_payment_service),
    idempotency: WebhookIdempotencyService = Depends(get_webhook_idempotency)
):
    """
    SSLCommerz instant payment notification (form encoded).

    verify_sign is checked before the event is claimed, so a forged
    notification can never shadow the genuine delivery.
    """
    form = await request.form()
    payload = {key: str(value) for key, value in form.items()}

    if not payload.get("verify_sign"):
        return error_response(status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR,
                              "Missing verify_sign")
    if not settings.SSLCOMMERZ_STORE_PASSWORD:
        logger.error("SSLCommerz store password is not configured")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR,
                              "Webhook secret not configured")

    transaction_id = payload.get("tran_id")
    if not transaction_id:
        return error_response(status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, "tran_id missing")

    if not verify_ipn_signature(payload, settings.SSLCOMMERZ_STORE_PASSWORD):
        logger.warning(f"Rejected SSLCommerz IPN {transaction_id}: invalid signature")
        return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_SIGNATURE", "Invalid IPN signature")

    event_id = sslcommerz_event_id(payload)

    try:
        processed, outcome = await idempotency.process_once_async(
            "sslcommerz", "ipn", event_id, lambda: payments.handle_sslcommerz_ipn(payload)
        )
    except AppError as e:
        if e.status_code < 500:
            logger.warning(f"Rejected SSLCommerz IPN {transaction_id}: {e.message}")
            return error_response(e.status_code, e.code, e.message)
        logger.exception(f"SSLCommerz IPN {transaction_id} failed: {e.message}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, WEBHOOK_FAILED, "Webhook processing failed")
    except Exception as e:
        logger.exception(f"SSLCommerz IPN {transaction_id} failed: {e}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, WEBHOOK_FAILED, "Webhook processing failed")

    if not processed:
        return {"received": True, "duplicate": True}
    return {"received": True, "outcome": outcome}
