"""
Attribute Repository - store attributes and their product assignments
"""
from typing import List, Optional, Tuple
from psycopg2.extras import Json
from app.domain.attribute import Attribute
from app.core.database import get_db_connection_dict


ATTRIBUTE_SELECT = """
    SELECT
        a.id, a.store_id, a.name, a.values, a.created_at, a.updated_at,
        (SELECT COUNT(*) FROM product_attributes pa WHERE pa.attribute_id = a.id) as product_count
    FROM attributes a
"""


class AttributeRepository:

    @staticmethod
    def _map_row(row: dict) -> Attribute:
        return Attribute(**{**row, 'values': row.get('values') or []})

    def find_by_id(self, store_id: int, attribute_id: int) -> Optional[Attribute]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(ATTRIBUTE_SELECT + """
                WHERE a.store_id = %s AND a.id = %s
            """, (store_id, attribute_id))
            row = cursor.fetchone()
            return self._map_row(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_all(self, store_id: int, search: Optional[str] = None,
                 limit: int = 10, offset: int = 0) -> Tuple[List[Attribute], int]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["a.store_id = %s"]
            params = [store_id]

            if search:
                conditions.append("a.name ILIKE %s")
                params.append(f"%{search}%")

            where_clause = " AND ".join(conditions)

            cursor.execute(f"SELECT COUNT(*) as total FROM attributes a WHERE {where_clause}", params)
            total = cursor.fetchone()['total']

            cursor.execute(ATTRIBUTE_SELECT + f"""
                WHERE {where_clause}
                ORDER BY a.name
                LIMIT %s OFFSET %s
            """, params + [limit, offset])

            return [self._map_row(row) for row in cursor.fetchall()], total

        finally:
            cursor.close()
            conn.close()

    def name_exists(self, store_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = "SELECT 1 FROM attributes WHERE store_id = %s AND LOWER(name) = LOWER(%s)"
            params = [store_id, name]
            if exclude_id is not None:
                query += " AND id <> %s"
                params.append(exclude_id)
            cursor.execute(query, params)
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def create(self, store_id: int, name: str, values: List[str]) -> Attribute:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO attributes (store_id, name, values)
                VALUES (%s, %s, %s)
                RETURNING id, store_id, name, values, created_at, updated_at
            """, (store_id, name, Json(values)))
            row = cursor.fetchone()
            conn.commit()
            return self._map_row(row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update(self, store_id: int, attribute_id: int, name: Optional[str] = None,
               values: Optional[List[str]] = None) -> Optional[Attribute]:
        set_clauses = ["updated_at = NOW()"]
        params = []

        if name is not None:
            set_clauses.append("name = %s")
            params.append(name)
        if values is not None:
            set_clauses.append("values = %s")
            params.append(Json(values))

        params.extend([attribute_id, store_id])

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE attributes
                SET {', '.join(set_clauses)}
                WHERE id = %s AND store_id = %s
            """, params)
            updated = cursor.rowcount > 0
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

        return self.find_by_id(store_id, attribute_id) if updated else None

    def delete(self, store_id: int, attribute_id: int) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "DELETE FROM attributes WHERE id = %s AND store_id = %s",
                (attribute_id, store_id)
            )
            deleted = cursor.rowcount > 0
            conn.commit()
            return deleted

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def values_in_use(self, attribute_id: int, values: List[str]) -> List[str]:
        """Subset of values currently assigned to at least one product"""
        if not values:
            return []

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT DISTINCT value FROM product_attributes
                WHERE attribute_id = %s AND value = ANY(%s)
            """, (attribute_id, list(values)))
            return [row['value'] for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def assign_to_product(self, product_id: int, attribute_id: int, value: str):
        """Set (or replace) the product's value for this attribute"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO product_attributes (product_id, attribute_id, value)
                VALUES (%s, %s, %s)
                ON CONFLICT (product_id, attribute_id) DO UPDATE SET value = EXCLUDED.value
            """, (product_id, attribute_id, value))
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
