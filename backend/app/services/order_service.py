"""
Order Service
Status state machine, listing, invoices and refunds for orders

Author: Platform Team
Date: 2025-11-20
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from app.core.auth import TokenUser
from app.core.errors import NotFoundError, ValidationError
from app.domain.order import (
    Order, OrderFilters, OrderStatus, OrderStatusUpdate, ShippingStatus,
)
from app.repositories.order_repository import OrderRepository
from app.repositories.store_repository import StoreRepository
from app.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


ORDER_STATUS_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.PENDING: [OrderStatus.PAID, OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELED],
    OrderStatus.PAYMENT_FAILED: [OrderStatus.PAID, OrderStatus.CANCELED],
    OrderStatus.PAID: [OrderStatus.PROCESSING, OrderStatus.CANCELED, OrderStatus.REFUNDED],
    OrderStatus.PROCESSING: [OrderStatus.SHIPPED, OrderStatus.CANCELED, OrderStatus.REFUNDED],
    OrderStatus.SHIPPED: [OrderStatus.DELIVERED, OrderStatus.CANCELED],
    OrderStatus.DELIVERED: [OrderStatus.REFUNDED],
    OrderStatus.CANCELED: [],
    OrderStatus.REFUNDED: [],
}


def can_transition(current: str, target: str) -> bool:
    return target in ORDER_STATUS_TRANSITIONS.get(current, [])


def append_note(existing: Optional[str], note: str, now: Optional[datetime] = None) -> str:
    """Admin notes accumulate, newest last, each line stamped"""
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M UTC")
    line = f"[{stamp}] {note}"
    return f"{existing}\n{line}" if existing else line


class OrderService:

    def __init__(self, repo: Optional[OrderRepository] = None,
                 store_repo: Optional[StoreRepository] = None,
                 audit: Optional[AuditService] = None):
        self.repo = repo or OrderRepository()
        self.store_repo = store_repo or StoreRepository()
        self.audit = audit or AuditService()

    def list(self, filters: OrderFilters, limit: int = 10, offset: int = 0) -> Tuple[List[Order], int]:
        """store_id None in filters lists every store (super admin only; enforced by the route)"""
        return self.repo.find_all(filters, limit=limit, offset=offset)

    def get(self, order_id: int, store_id: Optional[int]) -> Order:
        order = self.repo.find_by_id(order_id, store_id=store_id)
        if order is None:
            raise NotFoundError("Order")
        return order

    def update_status(self, order_id: int, store_id: Optional[int], update: OrderStatusUpdate,
                      user: Optional[TokenUser] = None) -> Order:
        """
        Move an order to a new status.

        Side effects:
            SHIPPED: tracking number required, shipping IN_TRANSIT
            DELIVERED: fulfilled_at, shipping DELIVERED
            CANCELED: canceled_at, shipping back to PENDING
        """
        order = self.get(order_id, store_id)

        if not can_transition(order.status, update.status):
            allowed = ORDER_STATUS_TRANSITIONS.get(order.status, [])
            raise ValidationError(
                f"Cannot change order status from {order.status} to {update.status}",
                code="INVALID_STATUS_TRANSITION",
                details={"currentStatus": order.status, "allowedStatuses": allowed}
            )

        now = datetime.now(timezone.utc)
        fields = {"status": update.status}

        if update.status == OrderStatus.SHIPPED:
            tracking_number = update.tracking_number or order.tracking_number
            if not tracking_number:
                raise ValidationError("Tracking number is required to mark an order as shipped")
            fields["tracking_number"] = tracking_number
            fields["shipping_status"] = ShippingStatus.IN_TRANSIT
            if update.tracking_url:
                fields["tracking_url"] = update.tracking_url

        elif update.status == OrderStatus.DELIVERED:
            fields["fulfilled_at"] = now
            fields["shipping_status"] = ShippingStatus.DELIVERED

        elif update.status == OrderStatus.CANCELED:
            fields["canceled_at"] = now
            fields["shipping_status"] = ShippingStatus.PENDING
            if update.cancel_reason:
                fields["cancel_reason"] = update.cancel_reason

        if update.admin_note:
            fields["admin_note"] = append_note(order.admin_note, update.admin_note, now)

        updated = self.repo.update(order.id, fields)
        if updated is None:
            raise NotFoundError("Order")

        logger.info(f"Order {order.order_number} status {order.status} -> {update.status}")
        self.audit.log(
            AuditAction.STATUS_CHANGE, "order", order.id, store_id=order.store_id, user=user,
            changes={"status": {"from": order.status, "to": update.status}},
            metadata={"trackingNumber": fields.get("tracking_number")} if "tracking_number" in fields else None,
        )
        return updated

    def build_invoice(self, order_id: int, store_id: Optional[int]) -> dict:
        """Everything an invoice document needs, in display order"""
        order = self.get(order_id, store_id)
        store = self.store_repo.find_by_id(order.store_id)
        if store is None:
            raise NotFoundError("Store")

        return {
            "invoiceNumber": f"INV-{order.order_number}",
            "issuedAt": (order.created_at or datetime.now(timezone.utc)).isoformat(),
            "store": {
                "name": store.name,
                "email": store.email,
                "phone": store.phone,
                "address": store.address,
                "website": store.website,
            },
            "order": {
                "orderNumber": order.order_number,
                "status": order.status,
                "paymentStatus": order.payment_status,
                "shippingMethod": order.shipping_method,
                "trackingNumber": order.tracking_number,
            },
            "customer": {
                "name": order.customer_name,
                "email": order.customer_email,
                "phone": order.customer_phone,
            },
            "billingAddress": order.billing_address or order.shipping_address,
            "shippingAddress": order.shipping_address,
            "items": [
                {
                    "name": item.product_name,
                    "variant": item.variant_name,
                    "sku": item.sku,
                    "quantity": item.quantity,
                    "unitPrice": float(item.price),
                    "total": float(item.total_amount),
                }
                for item in order.items
            ],
            "totals": {
                "subtotal": float(order.subtotal),
                "tax": float(order.tax_amount),
                "shipping": float(order.shipping_amount),
                "discount": float(order.discount_amount),
                "total": float(order.total_amount),
                "currency": order.currency,
            },
        }
