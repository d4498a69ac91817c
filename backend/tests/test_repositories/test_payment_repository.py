"""
Unit tests for PaymentRepository

Payment and order updates must go through a single transaction.
"""
from decimal import Decimal
from unittest.mock import MagicMock, patch

from app.repositories.payment_repository import PaymentRepository


def mock_transaction(mock_transaction_fn):
    cursor = MagicMock()
    mock_transaction_fn.return_value.__enter__.return_value = cursor
    return cursor


class TestPaymentRepository:

    @patch('app.repositories.payment_repository.transaction')
    def test_mark_paid_updates_payment_and_order_together(self, mock_transaction_fn):
        cursor = mock_transaction(mock_transaction_fn)

        PaymentRepository().mark_paid(5, 100, charge_id="ch_1", method="card")

        mock_transaction_fn.assert_called_once()
        assert cursor.execute.call_count == 2
        payment_sql, payment_params = cursor.execute.call_args_list[0][0]
        order_sql, order_params = cursor.execute.call_args_list[1][0]
        assert "UPDATE payments" in payment_sql
        assert payment_params == ("ch_1", "card", 5)
        assert "UPDATE orders" in order_sql
        assert "'PROCESSING'" in order_sql
        assert order_params == (100,)

    @patch('app.repositories.payment_repository.transaction')
    def test_mark_refunded_touches_both_rows(self, mock_transaction_fn):
        cursor = mock_transaction(mock_transaction_fn)

        PaymentRepository().mark_refunded(5, 100, Decimal("48.87"), "Damaged")

        statements = [call[0][0] for call in cursor.execute.call_args_list]
        assert any("UPDATE payments" in sql for sql in statements)
        assert any("UPDATE orders" in sql and "REFUNDED" in sql for sql in statements)

    @patch('app.repositories.payment_repository.transaction')
    def test_mark_failed_skips_settled_payments(self, mock_transaction_fn):
        cursor = mock_transaction(mock_transaction_fn)
        cursor.rowcount = 0

        changed = PaymentRepository().mark_failed(5, 100, "card_declined", "Payment failed")

        assert changed is False
        assert cursor.execute.call_count == 1
        payment_sql, payment_params = cursor.execute.call_args_list[0][0]
        assert "NOT IN ('PAID', 'REFUNDED')" in payment_sql
        assert payment_params == ("card_declined", "Payment failed", 5)

    @patch('app.repositories.payment_repository.transaction')
    def test_mark_failed_moves_pending_order(self, mock_transaction_fn):
        cursor = mock_transaction(mock_transaction_fn)
        cursor.rowcount = 1

        changed = PaymentRepository().mark_failed(5, 100, "card_declined", "Payment failed")

        assert changed is True
        order_sql, order_params = cursor.execute.call_args_list[1][0]
        assert "'PAYMENT_FAILED'" in order_sql
        assert "payment_status NOT IN ('PAID', 'REFUNDED')" in order_sql
        assert order_params == (100,)
