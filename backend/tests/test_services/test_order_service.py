"""
Unit tests for OrderService: the status state machine and invoices
"""
from unittest.mock import Mock

import pytest

from app.core.errors import NotFoundError, ValidationError
from app.domain.order import OrderStatus, OrderStatusUpdate
from app.services.order_service import (
    ORDER_STATUS_TRANSITIONS, OrderService, append_note, can_transition,
)


@pytest.fixture
def order_service(sample_order, sample_store):
    repo = Mock()
    repo.find_by_id.return_value = sample_order
    repo.update.side_effect = lambda order_id, fields: sample_order.model_copy(update=fields)
    store_repo = Mock()
    store_repo.find_by_id.return_value = sample_store
    return OrderService(repo=repo, store_repo=store_repo, audit=Mock())


class TestTransitions:

    @pytest.mark.parametrize("current,target", [
        ("PENDING", "PAID"),
        ("PAID", "PROCESSING"),
        ("PROCESSING", "SHIPPED"),
        ("SHIPPED", "DELIVERED"),
        ("DELIVERED", "REFUNDED"),
        ("PAYMENT_FAILED", "PAID"),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target) is True

    @pytest.mark.parametrize("current,target", [
        ("PENDING", "SHIPPED"),
        ("DELIVERED", "PROCESSING"),
        ("CANCELED", "PAID"),
        ("REFUNDED", "PENDING"),
    ])
    def test_rejected(self, current, target):
        assert can_transition(current, target) is False

    def test_terminal_states(self):
        assert ORDER_STATUS_TRANSITIONS[OrderStatus.CANCELED] == []
        assert ORDER_STATUS_TRANSITIONS[OrderStatus.REFUNDED] == []


class TestUpdateStatus:

    def test_shipped_requires_tracking_number(self, order_service):
        with pytest.raises(ValidationError, match="Tracking number"):
            order_service.update_status(100, 1, OrderStatusUpdate(status="SHIPPED"))

        order_service.repo.update.assert_not_called()

    def test_shipped_sets_tracking_and_shipping_status(self, order_service):
        updated = order_service.update_status(
            100, 1, OrderStatusUpdate(status="SHIPPED", tracking_number="1Z999")
        )

        fields = order_service.repo.update.call_args[0][1]
        assert fields["tracking_number"] == "1Z999"
        assert fields["shipping_status"] == "IN_TRANSIT"
        assert updated.status == "SHIPPED"
        order_service.audit.log.assert_called_once()

    def test_invalid_transition_lists_allowed_statuses(self, order_service, sample_order):
        sample_order.status = "DELIVERED"

        with pytest.raises(ValidationError) as exc_info:
            order_service.update_status(100, 1, OrderStatusUpdate(status="PROCESSING"))

        assert exc_info.value.code == "INVALID_STATUS_TRANSITION"
        assert exc_info.value.details["allowedStatuses"] == ["REFUNDED"]

    def test_cancel_records_reason(self, order_service):
        order_service.update_status(100, 1, OrderStatusUpdate(status="CANCELED", cancel_reason="Out of stock"))

        fields = order_service.repo.update.call_args[0][1]
        assert fields["cancel_reason"] == "Out of stock"
        assert fields["canceled_at"] is not None
        assert fields["shipping_status"] == "PENDING"

    def test_admin_notes_accumulate(self, order_service, sample_order):
        sample_order.admin_note = "[2025-11-01 10:00 UTC] Called customer"

        order_service.update_status(100, 1, OrderStatusUpdate(status="CANCELED", admin_note="Refund later"))

        note = order_service.repo.update.call_args[0][1]["admin_note"]
        assert note.startswith("[2025-11-01 10:00 UTC] Called customer\n")
        assert note.endswith("Refund later")

    def test_missing_order(self, order_service):
        order_service.repo.find_by_id.return_value = None

        with pytest.raises(NotFoundError):
            order_service.update_status(999, 1, OrderStatusUpdate(status="PAID"))


class TestInvoice:

    def test_invoice_contents(self, order_service):
        invoice = order_service.build_invoice(100, 1)

        assert invoice["invoiceNumber"] == "INV-ORD-00042"
        assert invoice["store"]["name"] == "Acme Outfitters"
        assert invoice["items"][0]["quantity"] == 2
        assert invoice["totals"]["total"] == 48.87
        assert invoice["billingAddress"] == invoice["shippingAddress"]


def test_append_note_without_existing():
    assert append_note(None, "First").endswith("] First")
