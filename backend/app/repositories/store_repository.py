"""
Store Repository - Data Access Layer for Stores (tenants)

Also answers the usage questions subscription limits depend on
(product count, orders this month).
"""
from datetime import datetime
from typing import List, Optional, Tuple
from app.domain.store import Store
from app.core.database import get_db_connection_dict, transaction


STORE_COLUMNS = """
    id, name, slug, email, phone, website, description, logo_url, currency, timezone,
    address, country, is_active,
    subscription_plan, subscription_status, trial_ends_at, subscription_ends_at,
    past_due_since, product_limit, order_limit, stripe_customer_id, stripe_subscription_id,
    created_at, updated_at
"""

UPDATABLE_COLUMNS = {
    'name', 'email', 'phone', 'website', 'description', 'logo_url', 'currency',
    'timezone', 'address', 'country', 'is_active',
}

SUBSCRIPTION_COLUMNS = {
    'subscription_plan', 'subscription_status', 'trial_ends_at', 'subscription_ends_at',
    'past_due_since', 'product_limit', 'order_limit', 'stripe_customer_id',
    'stripe_subscription_id',
}


class StoreRepository:
    """Repository for Store data access"""

    def _find_one(self, where: str, params: tuple) -> Optional[Store]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {STORE_COLUMNS}
                FROM stores
                WHERE {where} AND deleted_at IS NULL
            """, params)
            row = cursor.fetchone()
            return Store(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_id(self, store_id: int) -> Optional[Store]:
        return self._find_one("id = %s", (store_id,))

    def find_by_slug(self, slug: str) -> Optional[Store]:
        return self._find_one("slug = %s", (slug,))

    def find_by_stripe_subscription_id(self, subscription_id: str) -> Optional[Store]:
        return self._find_one("stripe_subscription_id = %s", (subscription_id,))

    def find_by_stripe_customer_id(self, customer_id: str) -> Optional[Store]:
        return self._find_one("stripe_customer_id = %s", (customer_id,))

    def slug_exists(self, slug: str) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            # Soft-deleted stores keep their slug reserved
            cursor.execute("SELECT 1 FROM stores WHERE slug = %s", (slug,))
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def find_all(
        self,
        search: Optional[str] = None,
        member_user_id: Optional[int] = None,
        subscription_plan: Optional[str] = None,
        limit: int = 10,
        offset: int = 0
    ) -> Tuple[List[Store], int]:
        """
        List stores, optionally only those a user belongs to

        Returns:
            Tuple of (list of stores, total count)
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["s.deleted_at IS NULL"]
            params = []

            if search:
                conditions.append("(s.name ILIKE %s OR s.slug ILIKE %s OR s.email ILIKE %s)")
                search_pattern = f"%{search}%"
                params.extend([search_pattern, search_pattern, search_pattern])

            if member_user_id is not None:
                conditions.append("""
                    EXISTS (
                        SELECT 1 FROM user_stores us
                        WHERE us.store_id = s.id AND us.user_id = %s AND us.is_active = TRUE
                    )
                """)
                params.append(member_user_id)

            if subscription_plan:
                conditions.append("s.subscription_plan = %s")
                params.append(subscription_plan)

            where_clause = " AND ".join(conditions)

            cursor.execute(f"""
                SELECT COUNT(*) as total
                FROM stores s
                WHERE {where_clause}
            """, params)
            total = cursor.fetchone()['total']

            cursor.execute(f"""
                SELECT {STORE_COLUMNS}
                FROM stores s
                WHERE {where_clause}
                ORDER BY s.created_at DESC
                LIMIT %s OFFSET %s
            """, params + [limit, offset])

            stores = [Store(**row) for row in cursor.fetchall()]
            return stores, total

        finally:
            cursor.close()
            conn.close()

    def create(self, data: dict, owner_id: Optional[int] = None, owner_role_id: Optional[int] = None) -> Store:
        """Insert a store and, when given, its owner membership in one transaction"""
        with transaction() as cursor:
            cursor.execute(f"""
                INSERT INTO stores (
                    name, slug, email, phone, website, description, currency, timezone, country,
                    subscription_plan, subscription_status, product_limit, order_limit
                ) VALUES (
                    %(name)s, %(slug)s, %(email)s, %(phone)s, %(website)s, %(description)s,
                    %(currency)s, %(timezone)s, %(country)s,
                    %(subscription_plan)s, %(subscription_status)s, %(product_limit)s, %(order_limit)s
                )
                RETURNING {STORE_COLUMNS}
            """, data)
            row = cursor.fetchone()

            if owner_id is not None and owner_role_id is not None:
                cursor.execute("""
                    INSERT INTO user_stores (user_id, store_id, role_id, is_active)
                    VALUES (%s, %s, %s, TRUE)
                """, (owner_id, row['id'], owner_role_id))

            return Store(**row)

    def _update_columns(self, store_id: int, fields: dict, allowed: set) -> Optional[Store]:
        fields = {key: value for key, value in fields.items() if key in allowed}
        if not fields:
            return self.find_by_id(store_id)

        set_clauses = [f"{column} = %s" for column in fields]
        set_clauses.append("updated_at = NOW()")
        params = list(fields.values()) + [store_id]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE stores
                SET {', '.join(set_clauses)}
                WHERE id = %s AND deleted_at IS NULL
                RETURNING {STORE_COLUMNS}
            """, params)
            row = cursor.fetchone()
            conn.commit()
            return Store(**row) if row else None

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update(self, store_id: int, fields: dict) -> Optional[Store]:
        return self._update_columns(store_id, fields, UPDATABLE_COLUMNS)

    def update_subscription(self, store_id: int, fields: dict) -> Optional[Store]:
        return self._update_columns(store_id, fields, SUBSCRIPTION_COLUMNS)

    def soft_delete(self, store_id: int) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE stores SET deleted_at = NOW(), is_active = FALSE
                WHERE id = %s AND deleted_at IS NULL
            """, (store_id,))
            deleted = cursor.rowcount > 0
            conn.commit()
            return deleted

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def count_products(self, store_id: int) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT COUNT(*) as total FROM products
                WHERE store_id = %s AND deleted_at IS NULL
            """, (store_id,))
            return cursor.fetchone()['total']

        finally:
            cursor.close()
            conn.close()

    def count_orders_since(self, store_id: int, since: datetime) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT COUNT(*) as total FROM orders
                WHERE store_id = %s AND deleted_at IS NULL AND created_at >= %s
            """, (store_id, since))
            return cursor.fetchone()['total']

        finally:
            cursor.close()
            conn.close()

    def find_downgrade_candidates(self, now: datetime, past_due_cutoff: datetime) -> List[Store]:
        """
        Paid stores whose trial expired, whose cancellation took effect,
        or that have been past due since before past_due_cutoff
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {STORE_COLUMNS}
                FROM stores
                WHERE deleted_at IS NULL
                  AND subscription_plan <> 'FREE'
                  AND (
                    (subscription_status = 'TRIAL' AND trial_ends_at < %s)
                    OR (subscription_status = 'CANCELED' AND subscription_ends_at < %s)
                    OR (subscription_status = 'PAST_DUE' AND past_due_since < %s)
                  )
                ORDER BY id
            """, (now, now, past_due_cutoff))
            return [Store(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()
