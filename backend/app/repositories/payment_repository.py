"""
Payment Repository

Payment state changes that also move the order are done in a single
transaction so an order is never PAID without its payment (or vice versa).
"""
from decimal import Decimal
from typing import List, Optional
from psycopg2.extras import Json
from app.domain.payment import Payment
from app.core.database import get_db_connection_dict, transaction


PAYMENT_COLUMNS = """
    id, store_id, order_id, amount, currency, gateway, method, status,
    gateway_payment_id, gateway_charge_id, refunded_amount, failure_code, failure_message,
    created_at, updated_at
"""


class PaymentRepository:

    def create(
        self,
        store_id: int,
        order_id: int,
        amount: Decimal,
        currency: str,
        gateway: str,
        gateway_payment_id: Optional[str] = None,
        method: Optional[str] = None,
        metadata: Optional[dict] = None
    ) -> Payment:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO payments (
                    store_id, order_id, amount, currency, gateway, method, status,
                    gateway_payment_id, metadata
                ) VALUES (%s, %s, %s, %s, %s, %s, 'PENDING', %s, %s)
                RETURNING {PAYMENT_COLUMNS}
            """, (store_id, order_id, amount, currency, gateway, method,
                  gateway_payment_id, Json(metadata or {})))
            row = cursor.fetchone()
            conn.commit()
            return Payment(**row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def find_by_id(self, payment_id: int, store_id: Optional[int] = None) -> Optional[Payment]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = f"SELECT {PAYMENT_COLUMNS} FROM payments WHERE id = %s"
            params = [payment_id]
            if store_id is not None:
                query += " AND store_id = %s"
                params.append(store_id)
            cursor.execute(query, params)
            row = cursor.fetchone()
            return Payment(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_gateway_payment_id(self, gateway_payment_id: str) -> Optional[Payment]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {PAYMENT_COLUMNS} FROM payments WHERE gateway_payment_id = %s
            """, (gateway_payment_id,))
            row = cursor.fetchone()
            return Payment(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_order(self, order_id: int) -> List[Payment]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {PAYMENT_COLUMNS} FROM payments
                WHERE order_id = %s
                ORDER BY created_at DESC
            """, (order_id,))
            return [Payment(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def mark_paid(self, payment_id: int, order_id: int, charge_id: Optional[str] = None,
                  method: Optional[str] = None):
        """Payment -> PAID; order -> payment PAID, status PROCESSING"""
        with transaction() as cursor:
            cursor.execute("""
                UPDATE payments
                SET status = 'PAID', gateway_charge_id = COALESCE(%s, gateway_charge_id),
                    method = COALESCE(%s, method), failure_code = NULL, failure_message = NULL,
                    updated_at = NOW()
                WHERE id = %s
            """, (charge_id, method, payment_id))
            cursor.execute("""
                UPDATE orders
                SET payment_status = 'PAID',
                    status = CASE WHEN status IN ('PENDING', 'PAYMENT_FAILED', 'PAID')
                                  THEN 'PROCESSING' ELSE status END,
                    updated_at = NOW()
                WHERE id = %s
            """, (order_id,))

    def mark_failed(self, payment_id: int, order_id: int, failure_code: Optional[str],
                    failure_message: Optional[str]):
        """
        Payment -> FAILED; order -> payment FAILED (and PAYMENT_FAILED while pending).

        Settled payments (PAID, REFUNDED) are left alone and the order is not touched.
        Returns True when the payment row changed.
        """
        with transaction() as cursor:
            cursor.execute("""
                UPDATE payments
                SET status = 'FAILED', failure_code = %s, failure_message = %s, updated_at = NOW()
                WHERE id = %s AND status NOT IN ('PAID', 'REFUNDED')
            """, (failure_code, failure_message, payment_id))
            if cursor.rowcount == 0:
                return False
            cursor.execute("""
                UPDATE orders
                SET payment_status = 'FAILED',
                    status = CASE WHEN status = 'PENDING' THEN 'PAYMENT_FAILED' ELSE status END,
                    updated_at = NOW()
                WHERE id = %s AND payment_status NOT IN ('PAID', 'REFUNDED')
            """, (order_id,))
        return True

    def mark_refunded(self, payment_id: int, order_id: int, refunded_amount: Decimal,
                      reason: Optional[str] = None):
        """Payment -> REFUNDED; order -> REFUNDED with the cancel reason"""
        with transaction() as cursor:
            cursor.execute("""
                UPDATE payments
                SET status = 'REFUNDED', refunded_amount = %s, updated_at = NOW()
                WHERE id = %s
            """, (refunded_amount, payment_id))
            cursor.execute("""
                UPDATE orders
                SET status = 'REFUNDED', payment_status = 'REFUNDED',
                    cancel_reason = COALESCE(%s, cancel_reason),
                    canceled_at = COALESCE(canceled_at, NOW()),
                    updated_at = NOW()
                WHERE id = %s
            """, (reason, order_id))
