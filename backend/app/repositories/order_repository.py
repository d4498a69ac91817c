"""
Order Repository - Data Access Layer for Orders

Handles all database queries for orders and returns Order domain models.

Author: Platform Team
Date: 2025-11-20
"""
from typing import List, Optional, Tuple
from psycopg2.extras import Json
from app.domain.order import Order, OrderItem, OrderPayment, OrderFilters
from app.core.database import get_db_connection_dict, transaction
from app.core.errors import InsufficientInventoryError


ORDER_FIELDS = (
    "id", "store_id", "customer_id", "order_number", "status", "payment_status",
    "shipping_status", "subtotal", "tax_amount", "shipping_amount", "discount_amount",
    "total_amount", "currency", "customer_email", "customer_name", "customer_phone",
    "shipping_address", "billing_address", "shipping_method", "tracking_number",
    "tracking_url", "customer_note", "admin_note", "cancel_reason",
    "fulfilled_at", "canceled_at", "created_at", "updated_at",
)

ORDER_COLUMNS = ", ".join(f"o.{field}" for field in ORDER_FIELDS)

UPDATABLE_COLUMNS = {
    'status', 'payment_status', 'shipping_status', 'tracking_number', 'tracking_url',
    'admin_note', 'cancel_reason', 'fulfilled_at', 'canceled_at',
}

SORT_COLUMNS = {
    'createdAt': 'o.created_at',
    'totalAmount': 'o.total_amount',
    'orderNumber': 'o.order_number',
}


class OrderRepository:
    """
    Repository for Order data access

    All SQL queries for orders are centralized here.
    Returns Order domain models with items and payments where requested.
    """

    @staticmethod
    def _map_row_to_order(row: dict) -> Order:
        return Order(**{key: value for key, value in row.items() if key in Order.model_fields})

    def _load_details(self, cursor, order: Order) -> Order:
        cursor.execute("""
            SELECT
                id, order_id, product_id, variant_id, product_name, variant_name, sku,
                price, quantity, subtotal, tax_amount, discount_amount, total_amount
            FROM order_items
            WHERE order_id = %s
            ORDER BY id
        """, (order.id,))
        order.items = [OrderItem(**row) for row in cursor.fetchall()]
        order.items_count = len(order.items)

        cursor.execute("""
            SELECT id, amount, currency, gateway, method, status, gateway_payment_id,
                   refunded_amount, created_at
            FROM payments
            WHERE order_id = %s
            ORDER BY created_at
        """, (order.id,))
        order.payments = [OrderPayment(**row) for row in cursor.fetchall()]
        return order

    def find_by_id(self, order_id: int, store_id: Optional[int] = None,
                   include_details: bool = True) -> Optional[Order]:
        """
        Find order by ID with items and payments

        Args:
            order_id: Internal order ID
            store_id: Restrict to this store (None only for super admins)

        Returns:
            Order or None if not found
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["o.id = %s", "o.deleted_at IS NULL"]
            params = [order_id]
            if store_id is not None:
                conditions.append("o.store_id = %s")
                params.append(store_id)

            cursor.execute(f"""
                SELECT {ORDER_COLUMNS}
                FROM orders o
                WHERE {' AND '.join(conditions)}
            """, params)

            row = cursor.fetchone()
            if not row:
                return None

            order = self._map_row_to_order(row)
            if include_details:
                order = self._load_details(cursor, order)
            return order

        finally:
            cursor.close()
            conn.close()

    def find_by_number(self, store_id: int, order_number: str,
                       customer_email: Optional[str] = None) -> Optional[Order]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["o.store_id = %s", "o.order_number = %s", "o.deleted_at IS NULL"]
            params = [store_id, order_number]
            if customer_email is not None:
                conditions.append("LOWER(o.customer_email) = LOWER(%s)")
                params.append(customer_email)

            cursor.execute(f"""
                SELECT {ORDER_COLUMNS}
                FROM orders o
                WHERE {' AND '.join(conditions)}
            """, params)

            row = cursor.fetchone()
            if not row:
                return None
            return self._load_details(cursor, self._map_row_to_order(row))

        finally:
            cursor.close()
            conn.close()

    @staticmethod
    def _filter_clause(filters: OrderFilters) -> Tuple[str, list]:
        conditions = ["o.deleted_at IS NULL"]
        params = []

        if filters.store_id is not None:
            conditions.append("o.store_id = %s")
            params.append(filters.store_id)

        if filters.status:
            conditions.append("o.status = %s")
            params.append(filters.status)

        if filters.search:
            conditions.append("""
                (o.order_number ILIKE %s OR o.customer_name ILIKE %s OR o.customer_email ILIKE %s)
            """)
            search_pattern = f"%{filters.search}%"
            params.extend([search_pattern, search_pattern, search_pattern])

        if filters.date_from:
            conditions.append("o.created_at >= %s")
            params.append(filters.date_from)

        if filters.date_to:
            conditions.append("o.created_at <= %s")
            params.append(filters.date_to)

        return " AND ".join(conditions), params

    def find_all(self, filters: OrderFilters, limit: int = 10, offset: int = 0) -> Tuple[List[Order], int]:
        """
        Find orders with filters

        Returns:
            Tuple of (list of orders, total count)
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            where_clause, params = self._filter_clause(filters)

            cursor.execute(f"""
                SELECT COUNT(*) as total
                FROM orders o
                WHERE {where_clause}
            """, params)
            total = cursor.fetchone()['total']

            order_column = SORT_COLUMNS.get(filters.sort_by, 'o.created_at')
            direction = 'ASC' if filters.sort_order == 'asc' else 'DESC'

            cursor.execute(f"""
                SELECT
                    {ORDER_COLUMNS},
                    (SELECT COUNT(*) FROM order_items oi WHERE oi.order_id = o.id) as items_count
                FROM orders o
                WHERE {where_clause}
                ORDER BY {order_column} {direction}, o.id {direction}
                LIMIT %s OFFSET %s
            """, params + [limit, offset])

            orders = [self._map_row_to_order(row) for row in cursor.fetchall()]
            return orders, total

        finally:
            cursor.close()
            conn.close()

    def update(self, order_id: int, fields: dict) -> Optional[Order]:
        fields = {key: value for key, value in fields.items() if key in UPDATABLE_COLUMNS}
        if not fields:
            return self.find_by_id(order_id)

        set_clauses = [f"{column} = %s" for column in fields]
        set_clauses.append("updated_at = NOW()")
        params = list(fields.values()) + [order_id]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE orders
                SET {', '.join(set_clauses)}
                WHERE id = %s AND deleted_at IS NULL
            """, params)
            updated = cursor.rowcount > 0
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

        return self.find_by_id(order_id) if updated else None

    def create_with_items(self, store_id: int, order: dict, items: List[dict], customer: dict) -> Order:
        """
        Create an order in one transaction:
        upsert customer, allocate order number, insert order and items,
        decrement tracked stock.

        Raises:
            InsufficientInventoryError: stock changed since the cart was validated
        """
        with transaction() as cursor:
            cursor.execute("""
                INSERT INTO customers (store_id, email, first_name, last_name, phone)
                VALUES (%s, LOWER(%s), %s, %s, %s)
                ON CONFLICT (store_id, email) DO UPDATE SET
                    first_name = EXCLUDED.first_name,
                    last_name = EXCLUDED.last_name,
                    phone = COALESCE(EXCLUDED.phone, customers.phone),
                    updated_at = NOW()
                RETURNING id
            """, (store_id, customer['email'], customer.get('first_name'),
                  customer.get('last_name'), customer.get('phone')))
            customer_id = cursor.fetchone()['id']

            # Serialize number allocation per store
            cursor.execute("SELECT id FROM stores WHERE id = %s FOR UPDATE", (store_id,))
            cursor.execute("SELECT COUNT(*) as total FROM orders WHERE store_id = %s", (store_id,))
            order_number = f"ORD-{cursor.fetchone()['total'] + 1:05d}"

            cursor.execute(f"""
                INSERT INTO orders (
                    store_id, customer_id, order_number, status, payment_status, shipping_status,
                    subtotal, tax_amount, shipping_amount, discount_amount, total_amount, currency,
                    customer_email, customer_name, customer_phone,
                    shipping_address, billing_address, shipping_method, customer_note
                ) VALUES (
                    %s, %s, %s, 'PENDING', 'PENDING', 'PENDING',
                    %s, %s, %s, %s, %s, %s,
                    %s, %s, %s,
                    %s, %s, %s, %s
                )
                RETURNING {', '.join(ORDER_FIELDS)}
            """, (
                store_id, customer_id, order_number,
                order['subtotal'], order['tax_amount'], order['shipping_amount'],
                order.get('discount_amount', 0), order['total_amount'], order.get('currency', 'USD'),
                order['customer_email'], order.get('customer_name'), order.get('customer_phone'),
                Json(order.get('shipping_address')), Json(order.get('billing_address')),
                order.get('shipping_method'), order.get('customer_note'),
            ))
            created = self._map_row_to_order(cursor.fetchone())

            created_items = []
            for item in items:
                cursor.execute("""
                    INSERT INTO order_items (
                        order_id, product_id, variant_id, product_name, variant_name, sku,
                        price, quantity, subtotal, tax_amount, discount_amount, total_amount
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id, order_id, product_id, variant_id, product_name, variant_name, sku,
                              price, quantity, subtotal, tax_amount, discount_amount, total_amount
                """, (
                    created.id, item['product_id'], item.get('variant_id'), item['product_name'],
                    item.get('variant_name'), item['sku'], item['price'], item['quantity'],
                    item['subtotal'], item.get('tax_amount', 0), item.get('discount_amount', 0),
                    item['total_amount'],
                ))
                created_items.append(OrderItem(**cursor.fetchone()))

                if not item.get('track_inventory', True):
                    continue

                if item.get('variant_id'):
                    cursor.execute("""
                        UPDATE product_variants SET inventory_qty = inventory_qty - %s
                        WHERE id = %s AND inventory_qty >= %s
                    """, (item['quantity'], item['variant_id'], item['quantity']))
                else:
                    cursor.execute("""
                        UPDATE products SET inventory_qty = inventory_qty - %s, updated_at = NOW()
                        WHERE id = %s AND store_id = %s AND inventory_qty >= %s
                    """, (item['quantity'], item['product_id'], store_id, item['quantity']))

                if cursor.rowcount == 0:
                    raise InsufficientInventoryError(
                        f"Insufficient stock for {item['product_name']}",
                        details={"productId": item['product_id'], "variantId": item.get('variant_id')}
                    )

            created.items = created_items
            created.items_count = len(created_items)
            return created

    def count_for_export(self, filters: OrderFilters) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            where_clause, params = self._filter_clause(filters)
            cursor.execute(f"SELECT COUNT(*) as total FROM orders o WHERE {where_clause}", params)
            return cursor.fetchone()['total']

        finally:
            cursor.close()
            conn.close()

    def fetch_export_batch(self, filters: OrderFilters, limit: int, offset: int) -> List[dict]:
        """One page of flat rows for CSV export, newest first"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            where_clause, params = self._filter_clause(filters)
            cursor.execute(f"""
                SELECT
                    o.order_number, o.customer_email, o.status, o.total_amount, o.currency,
                    o.created_at, o.payment_status,
                    (SELECT COUNT(*) FROM order_items oi WHERE oi.order_id = o.id) as items_count
                FROM orders o
                WHERE {where_clause}
                ORDER BY o.created_at DESC, o.id DESC
                LIMIT %s OFFSET %s
            """, params + [limit, offset])
            return cursor.fetchall()

        finally:
            cursor.close()
            conn.close()
