"""
Unit tests for PaymentService: gateway events, IPN handling and refunds
"""
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from app.core.errors import InternalError, NotFoundError, PaymentError, ValidationError
from app.domain.payment import Payment
from app.services.idempotency_service import WebhookIdempotencyService
from app.services.payment_service import PaymentService


def make_payment(status="PENDING", gateway="STRIPE", **fields):
    values = dict(
        id=7, store_id=1, order_id=42, amount=Decimal("48.87"), currency="USD",
        gateway=gateway, status=status, gateway_payment_id="pi_1",
    )
    values.update(fields)
    return Payment(**values)


def stripe_event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture
def repo():
    repo = Mock()
    repo.find_by_gateway_payment_id.return_value = make_payment()
    return repo


@pytest.fixture
def sslcommerz():
    connector = Mock()
    connector.verify_ipn.return_value = True
    connector.validate_transaction = AsyncMock(
        return_value={"is_valid": True, "status": "VALID", "data": {}}
    )
    return connector


@pytest.fixture
def service(repo, sslcommerz):
    return PaymentService(repo=repo, stripe=Mock(), sslcommerz=sslcommerz, audit=Mock())


class TestHandleStripeEvent:

    def test_succeeded_marks_paid(self, service, repo):
        outcome = service.handle_stripe_event(stripe_event(
            "payment_intent.succeeded",
            {"id": "pi_1", "latest_charge": "ch_1", "payment_method_types": ["card"]},
        ))

        assert outcome == "paid"
        repo.mark_paid.assert_called_once_with(7, 42, charge_id="ch_1", method="card")

    def test_succeeded_twice_is_a_no_op(self, service, repo):
        repo.find_by_gateway_payment_id.return_value = make_payment(status="PAID")

        outcome = service.handle_stripe_event(stripe_event("payment_intent.succeeded", {"id": "pi_1"}))

        assert outcome == "already_paid"
        repo.mark_paid.assert_not_called()

    def test_failed_records_decline(self, service, repo):
        outcome = service.handle_stripe_event(stripe_event(
            "payment_intent.payment_failed",
            {"id": "pi_1", "last_payment_error": {"code": "card_declined", "message": "Declined"}},
        ))

        assert outcome == "failed"
        repo.mark_failed.assert_called_once_with(7, 42, "card_declined", "Declined")

    @pytest.mark.parametrize("status,expected", [("PAID", "already_paid"), ("REFUNDED", "already_refunded")])
    def test_late_failure_never_unpays(self, service, repo, status, expected):
        repo.find_by_gateway_payment_id.return_value = make_payment(status=status)

        outcome = service.handle_stripe_event(stripe_event(
            "payment_intent.payment_failed",
            {"id": "pi_1", "last_payment_error": {"code": "card_declined"}},
        ))

        assert outcome == expected
        repo.mark_failed.assert_not_called()

    def test_charge_refunded_converts_cents(self, service, repo):
        repo.find_by_gateway_payment_id.return_value = make_payment(status="PAID")

        outcome = service.handle_stripe_event(stripe_event(
            "charge.refunded", {"id": "ch_1", "payment_intent": "pi_1", "amount_refunded": 4887},
        ))

        assert outcome == "refunded"
        repo.mark_refunded.assert_called_once_with(7, 42, Decimal("48.87"), reason="Refunded in Stripe")

    def test_unknown_payment_is_ignored(self, service, repo):
        repo.find_by_gateway_payment_id.return_value = None

        assert service.handle_stripe_event(stripe_event("payment_intent.succeeded", {"id": "pi_x"})) is None
        repo.mark_paid.assert_not_called()

    def test_unhandled_event_type(self, service, repo):
        assert service.handle_stripe_event(stripe_event("customer.created", {"id": "cus_1"})) is None
        repo.find_by_gateway_payment_id.assert_not_called()


class TestHandleSSLCommerzIpn:

    IPN = {"tran_id": "1-ORD-00042", "val_id": "VAL1", "status": "VALID",
           "bank_tran_id": "BT1", "card_type": "VISA-Dutch Bangla"}

    @pytest.fixture(autouse=True)
    def sslcommerz_payment(self, repo):
        repo.find_by_gateway_payment_id.return_value = make_payment(
            gateway="SSLCOMMERZ", gateway_payment_id="1-ORD-00042"
        )

    def test_bad_signature(self, service, sslcommerz, repo):
        sslcommerz.verify_ipn.return_value = False

        with pytest.raises(ValidationError) as exc:
            asyncio.run(service.handle_sslcommerz_ipn(self.IPN))

        assert exc.value.code == "INVALID_SIGNATURE"
        repo.find_by_gateway_payment_id.assert_not_called()

    def test_unknown_transaction(self, service, repo):
        repo.find_by_gateway_payment_id.return_value = None

        with pytest.raises(NotFoundError):
            asyncio.run(service.handle_sslcommerz_ipn(self.IPN))

    def test_validated_payment_is_marked_paid(self, service, sslcommerz, repo):
        outcome = asyncio.run(service.handle_sslcommerz_ipn(self.IPN))

        assert outcome == "paid"
        sslcommerz.validate_transaction.assert_awaited_once_with("VAL1", Decimal("48.87"), "USD")
        repo.mark_paid.assert_called_once_with(7, 42, charge_id="BT1", method="VISA-Dutch Bangla")

    def test_definitive_invalid_answer_fails_payment(self, service, sslcommerz, repo):
        sslcommerz.validate_transaction.return_value = {"is_valid": False, "status": "INVALID_TRANSACTION", "data": {}}

        outcome = asyncio.run(service.handle_sslcommerz_ipn(self.IPN))

        assert outcome == "failed"
        repo.mark_failed.assert_called_once()
        assert repo.mark_failed.call_args[0][2] == "VALIDATION_FAILED"

    def test_validation_outage_raises_without_failing_payment(self, service, sslcommerz, repo):
        sslcommerz.validate_transaction.return_value = {"is_valid": False, "status": "ERROR", "data": None}

        with pytest.raises(InternalError) as exc:
            asyncio.run(service.handle_sslcommerz_ipn(self.IPN))

        assert exc.value.status_code == 500
        repo.mark_failed.assert_not_called()
        repo.mark_paid.assert_not_called()

    def test_validation_outage_leaves_event_open_for_retry(self, service, sslcommerz, repo):
        claims = Mock()
        claims.insert_claim.side_effect = [True, True]
        guard = WebhookIdempotencyService(repo=claims)
        sslcommerz.validate_transaction.side_effect = [
            {"is_valid": False, "status": "ERROR", "data": None},
            {"is_valid": True, "status": "VALID", "data": {}},
        ]

        def deliver():
            return asyncio.run(guard.process_once_async(
                "sslcommerz", "ipn", "1-ORD-00042:VAL1|VALID",
                lambda: service.handle_sslcommerz_ipn(self.IPN),
            ))

        with pytest.raises(InternalError):
            deliver()
        claims.delete_claim.assert_called_once()

        assert deliver() == (True, "paid")
        repo.mark_failed.assert_not_called()
        repo.mark_paid.assert_called_once()

    def test_failed_status(self, service, repo, sslcommerz):
        outcome = asyncio.run(service.handle_sslcommerz_ipn({**self.IPN, "status": "FAILED", "error": "Declined"}))

        assert outcome == "failed"
        repo.mark_failed.assert_called_once_with(7, 42, "FAILED", "Declined")
        sslcommerz.validate_transaction.assert_not_awaited()

    def test_cancel_after_payment_is_ignored(self, service, repo):
        repo.find_by_gateway_payment_id.return_value = make_payment(
            status="PAID", gateway="SSLCOMMERZ", gateway_payment_id="1-ORD-00042"
        )

        outcome = asyncio.run(service.handle_sslcommerz_ipn({**self.IPN, "status": "CANCELLED"}))

        assert outcome == "already_paid"
        repo.mark_failed.assert_not_called()

    def test_unknown_status_is_ignored(self, service, repo):
        outcome = asyncio.run(service.handle_sslcommerz_ipn({**self.IPN, "status": "PENDING"}))

        assert outcome == "ignored"
        repo.mark_paid.assert_not_called()
        repo.mark_failed.assert_not_called()


class TestRefundPayment:

    def test_only_paid_payments(self, service, repo):
        repo.find_by_id.return_value = make_payment(status="PENDING")

        with pytest.raises(ValidationError) as exc:
            asyncio.run(service.refund_payment(7, 1))

        assert exc.value.code == "PAYMENT_NOT_REFUNDABLE"
        repo.mark_refunded.assert_not_called()

    def test_amount_above_payment(self, service, repo):
        repo.find_by_id.return_value = make_payment(status="PAID")

        with pytest.raises(ValidationError, match="exceeds"):
            asyncio.run(service.refund_payment(7, 1, amount=Decimal("100.00")))

    def test_missing_payment(self, service, repo):
        repo.find_by_id.return_value = None

        with pytest.raises(NotFoundError):
            asyncio.run(service.refund_payment(7, 1))

    def test_stripe_refund_defaults_to_full_amount(self, service, repo):
        repo.find_by_id.return_value = make_payment(status="PAID")
        service.stripe.create_refund = AsyncMock(return_value={"id": "re_1"})

        asyncio.run(service.refund_payment(7, 1, reason="Damaged"))

        assert service.stripe.create_refund.call_args[0][0] == "pi_1"
        assert service.stripe.create_refund.call_args[1]["amount"] == Decimal("48.87")
        repo.mark_refunded.assert_called_once_with(7, 42, Decimal("48.87"), "Damaged")
        service.audit.log.assert_called_once()

    def test_sslcommerz_refund_uses_bank_transaction(self, service, repo, sslcommerz):
        repo.find_by_id.return_value = make_payment(
            status="PAID", gateway="SSLCOMMERZ", gateway_payment_id="1-ORD-00042", gateway_charge_id="BT1"
        )
        sslcommerz.refund = AsyncMock(return_value={"status": "success", "message": "ok"})

        asyncio.run(service.refund_payment(7, 1, amount=Decimal("10.00")))

        assert sslcommerz.refund.call_args[0][:2] == ("BT1", Decimal("10.00"))
        repo.mark_refunded.assert_called_once_with(7, 42, Decimal("10.00"), None)

    def test_sslcommerz_refund_rejected(self, service, repo, sslcommerz):
        repo.find_by_id.return_value = make_payment(
            status="PAID", gateway="SSLCOMMERZ", gateway_payment_id="1-ORD-00042", gateway_charge_id="BT1"
        )
        sslcommerz.refund = AsyncMock(return_value={"status": "failed", "message": "Refund window closed"})

        with pytest.raises(PaymentError, match="Refund window closed"):
            asyncio.run(service.refund_payment(7, 1))

        repo.mark_refunded.assert_not_called()

    def test_refund_order_picks_paid_payment(self, service, repo):
        repo.find_by_order.return_value = [make_payment(status="FAILED", id=6), make_payment(status="PAID")]
        repo.find_by_id.return_value = make_payment(status="REFUNDED")
        service.stripe.create_refund = AsyncMock(return_value={"id": "re_1"})

        asyncio.run(service.refund_order(42, 1))

        repo.mark_refunded.assert_called_once()
        assert repo.mark_refunded.call_args[0][0] == 7
