"""
Payment Service
Starts payments for storefront orders and applies gateway outcomes

- Stripe: PaymentIntent per order, webhook events update payment + order
- SSLCommerz: hosted gateway session, IPN validated server-side
- Cash on delivery: payment row only

Payment and order changes are written together (see PaymentRepository).

Author: Platform Team
Date: 2025-11-20
"""
import logging
from decimal import Decimal
from typing import Optional

from app.connectors.sslcommerz_connector import SSLCommerzConnector
from app.connectors.stripe_connector import StripeConnector
from app.core.auth import TokenUser
from app.core.errors import InternalError, NotFoundError, PaymentError, ValidationError
from app.domain.base import round_money
from app.domain.order import Order, PaymentStatus
from app.domain.payment import Payment, PaymentGateway
from app.repositories.payment_repository import PaymentRepository
from app.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)

SSLCOMMERZ_VALID = ("VALID", "VALIDATED")
SSLCOMMERZ_FAILED = ("FAILED", "CANCELLED", "UNATTEMPTED", "EXPIRED")

SETTLED_STATUSES = (PaymentStatus.PAID, PaymentStatus.REFUNDED)
SETTLED_OUTCOMES = {
    PaymentStatus.PAID: "already_paid",
    PaymentStatus.REFUNDED: "already_refunded",
}


class PaymentService:

    def __init__(self, repo: Optional[PaymentRepository] = None,
                 stripe: Optional[StripeConnector] = None,
                 sslcommerz: Optional[SSLCommerzConnector] = None,
                 audit: Optional[AuditService] = None):
        self.repo = repo or PaymentRepository()
        self._stripe = stripe
        self._sslcommerz = sslcommerz
        self.audit = audit or AuditService()

    # Connectors need credentials; build them only when a gateway is used
    @property
    def stripe(self) -> StripeConnector:
        if self._stripe is None:
            self._stripe = StripeConnector()
        return self._stripe

    @property
    def sslcommerz(self) -> SSLCommerzConnector:
        if self._sslcommerz is None:
            self._sslcommerz = SSLCommerzConnector()
        return self._sslcommerz

    # ------------------------------------------------------------------
    # Starting payments
    # ------------------------------------------------------------------

    async def create_payment_intent(self, order: Order) -> dict:
        intent = await self.stripe.create_payment_intent(
            order.total_amount,
            order.currency,
            metadata={"orderId": order.id, "orderNumber": order.order_number, "storeId": order.store_id},
            receipt_email=order.customer_email,
            idempotency_key=f"order-{order.id}-intent",
        )
        payment = self.repo.create(
            order.store_id, order.id, order.total_amount, order.currency,
            PaymentGateway.STRIPE, gateway_payment_id=intent["id"],
        )
        logger.info(f"Created PaymentIntent {intent['id']} for order {order.order_number}")
        return {
            "paymentId": payment.id,
            "gateway": PaymentGateway.STRIPE,
            "paymentIntentId": intent["id"],
            "clientSecret": intent.get("client_secret"),
        }

    async def create_sslcommerz_session(self, order: Order, base_url: str, ipn_url: Optional[str] = None) -> dict:
        transaction_id = f"{order.store_id}-{order.order_number}"
        address = order.shipping_address or {}
        session = await self.sslcommerz.init_session(
            total_amount=order.total_amount,
            currency=order.currency,
            transaction_id=transaction_id,
            customer={
                "name": order.customer_name,
                "email": order.customer_email,
                "phone": order.customer_phone or address.get("phone") or "",
                "address": address.get("address1", ""),
                "city": address.get("city", ""),
                "country": address.get("country", ""),
            },
            success_url=f"{base_url}/checkout/success?order={order.order_number}",
            fail_url=f"{base_url}/checkout/failed?order={order.order_number}",
            cancel_url=f"{base_url}/checkout/cancelled?order={order.order_number}",
            ipn_url=ipn_url,
            product_name=f"Order {order.order_number}",
            num_of_items=len(order.items) or 1,
        )
        payment = self.repo.create(
            order.store_id, order.id, order.total_amount, order.currency,
            PaymentGateway.SSLCOMMERZ, gateway_payment_id=transaction_id,
            metadata={"sessionKey": session.get("sessionkey")},
        )
        return {
            "paymentId": payment.id,
            "gateway": PaymentGateway.SSLCOMMERZ,
            "transactionId": transaction_id,
            "gatewayUrl": session.get("GatewayPageURL"),
        }

    async def start_payment(self, order: Order, gateway: str, base_url: str = "",
                            ipn_url: Optional[str] = None) -> dict:
        if gateway == PaymentGateway.STRIPE:
            return await self.create_payment_intent(order)
        if gateway == PaymentGateway.SSLCOMMERZ:
            return await self.create_sslcommerz_session(order, base_url, ipn_url)
        if gateway == PaymentGateway.CASH_ON_DELIVERY:
            payment = self.repo.create(
                order.store_id, order.id, order.total_amount, order.currency,
                PaymentGateway.CASH_ON_DELIVERY, method="cash",
            )
            return {"paymentId": payment.id, "gateway": gateway}
        raise ValidationError(f"Unsupported payment gateway: {gateway}")

    # ------------------------------------------------------------------
    # Stripe webhook
    # ------------------------------------------------------------------

    def handle_stripe_event(self, event: dict) -> Optional[str]:
        """Apply a payment webhook event; returns the outcome or None when ignored"""
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type in ("payment_intent.succeeded", "payment_intent.payment_failed"):
            payment = self.repo.find_by_gateway_payment_id(obj.get("id"))
            if payment is None:
                logger.warning(f"No payment for PaymentIntent {obj.get('id')} (event {event.get('id')})")
                return None

            if event_type == "payment_intent.succeeded":
                if payment.status == PaymentStatus.PAID:
                    return "already_paid"
                method_types = obj.get("payment_method_types") or []
                self.repo.mark_paid(
                    payment.id, payment.order_id,
                    charge_id=obj.get("latest_charge"),
                    method=method_types[0] if method_types else None,
                )
                logger.info(f"Payment {payment.id} captured for order {payment.order_id}")
                return "paid"

            # Delivery order is not guaranteed; a late failure never undoes a capture
            if payment.status in SETTLED_STATUSES:
                logger.info(f"Ignoring late failure for settled payment {payment.id} (event {event.get('id')})")
                return SETTLED_OUTCOMES[payment.status]

            error = obj.get("last_payment_error") or {}
            self.repo.mark_failed(
                payment.id, payment.order_id,
                error.get("code") or error.get("decline_code"),
                error.get("message") or "Payment failed",
            )
            logger.info(f"Payment {payment.id} failed for order {payment.order_id}: {error.get('code')}")
            return "failed"

        if event_type == "charge.refunded":
            payment = self.repo.find_by_gateway_payment_id(obj.get("payment_intent"))
            if payment is None:
                logger.warning(f"No payment for refunded charge {obj.get('id')}")
                return None
            if payment.status == PaymentStatus.REFUNDED:
                return "already_refunded"
            refunded = round_money(Decimal(obj.get("amount_refunded") or 0) / 100)
            self.repo.mark_refunded(payment.id, payment.order_id, refunded, reason="Refunded in Stripe")
            return "refunded"

        logger.info(f"Ignoring Stripe payment event type {event_type}")
        return None

    # ------------------------------------------------------------------
    # SSLCommerz IPN
    # ------------------------------------------------------------------

    async def handle_sslcommerz_ipn(self, payload: dict) -> str:
        if not self.sslcommerz.verify_ipn(payload):
            raise ValidationError("Invalid IPN signature", code="INVALID_SIGNATURE")

        transaction_id = payload.get("tran_id")
        payment = self.repo.find_by_gateway_payment_id(transaction_id)
        if payment is None:
            raise NotFoundError("Payment")

        status = (payload.get("status") or "").upper()

        if status in SSLCOMMERZ_VALID:
            if payment.status in SETTLED_STATUSES:
                return SETTLED_OUTCOMES[payment.status]
            validation = await self.sslcommerz.validate_transaction(
                payload.get("val_id"), payment.amount, payment.currency
            )
            if validation["status"] == "ERROR":
                # Validation API unreachable: no verdict, let the gateway retry the IPN
                raise InternalError(
                    f"SSLCommerz validation unavailable for {transaction_id}",
                    code="GATEWAY_UNAVAILABLE"
                )
            if not validation["is_valid"]:
                self.repo.mark_failed(payment.id, payment.order_id, "VALIDATION_FAILED",
                                      f"Gateway validation returned {validation['status']}")
                logger.warning(f"SSLCommerz transaction {transaction_id} failed validation")
                return "failed"
            self.repo.mark_paid(payment.id, payment.order_id,
                                charge_id=payload.get("bank_tran_id"),
                                method=payload.get("card_type"))
            return "paid"

        if status in SSLCOMMERZ_FAILED:
            if payment.status in SETTLED_STATUSES:
                logger.info(f"Ignoring {status} IPN for settled payment {payment.id}")
                return SETTLED_OUTCOMES[payment.status]
            self.repo.mark_failed(payment.id, payment.order_id, status,
                                  payload.get("error") or f"Payment {status.lower()}")
            return "failed"

        logger.info(f"Ignoring SSLCommerz IPN status {status} for {transaction_id}")
        return "ignored"

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def refund_payment(self, payment_id: int, store_id: Optional[int],
                             amount: Optional[Decimal] = None, reason: Optional[str] = None,
                             user: Optional[TokenUser] = None) -> Payment:
        payment = self.repo.find_by_id(payment_id, store_id=store_id)
        if payment is None:
            raise NotFoundError("Payment")
        return await self._refund(payment, amount, reason, user)

    async def refund_order(self, order_id: int, store_id: Optional[int],
                           amount: Optional[Decimal] = None, reason: Optional[str] = None,
                           user: Optional[TokenUser] = None) -> Payment:
        paid = [payment for payment in self.repo.find_by_order(order_id)
                if payment.status == PaymentStatus.PAID
                and (store_id is None or payment.store_id == store_id)]
        if not paid:
            raise ValidationError("Order has no captured payment to refund", code="PAYMENT_NOT_REFUNDABLE")
        return await self._refund(paid[0], amount, reason, user)

    async def _refund(self, payment: Payment, amount: Optional[Decimal], reason: Optional[str],
                      user: Optional[TokenUser]) -> Payment:
        if payment.status != PaymentStatus.PAID:
            raise ValidationError(
                f"Only paid payments can be refunded (status {payment.status})",
                code="PAYMENT_NOT_REFUNDABLE"
            )

        refund_amount = round_money(amount if amount is not None else payment.amount)
        if refund_amount > payment.amount:
            raise ValidationError("Refund amount exceeds the payment amount")

        if payment.gateway == PaymentGateway.STRIPE:
            await self.stripe.create_refund(
                payment.gateway_payment_id, amount=refund_amount,
                reason="requested_by_customer",
                metadata={"paymentId": payment.id, "orderId": payment.order_id},
            )
        elif payment.gateway == PaymentGateway.SSLCOMMERZ:
            result = await self.sslcommerz.refund(
                payment.gateway_charge_id or payment.gateway_payment_id,
                refund_amount,
                remarks=reason or "Customer requested refund",
            )
            if result["status"] not in ("success", "SUCCESS", "processing"):
                raise PaymentError(result["message"], details={"gatewayStatus": result["status"]})

        self.repo.mark_refunded(payment.id, payment.order_id, refund_amount, reason)
        logger.info(f"Refunded {refund_amount} {payment.currency} on payment {payment.id}")

        self.audit.log(AuditAction.REFUND, "order", payment.order_id, store_id=payment.store_id, user=user,
                       changes={"refundedAmount": refund_amount, "paymentId": payment.id},
                       metadata={"reason": reason} if reason else None)

        return self.repo.find_by_id(payment.id)
