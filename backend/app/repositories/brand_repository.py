"""
Brand Repository
"""
from typing import List, Optional, Tuple
from app.domain.brand import Brand
from app.core.database import get_db_connection_dict


BRAND_SELECT = """
    SELECT
        b.id, b.store_id, b.name, b.slug, b.description, b.logo_url, b.website_url,
        b.is_published, b.created_at, b.updated_at,
        (SELECT COUNT(*) FROM products p
         WHERE p.brand_id = b.id AND p.deleted_at IS NULL) as product_count
    FROM brands b
"""

WRITABLE_COLUMNS = ('name', 'slug', 'description', 'logo_url', 'website_url', 'is_published')


class BrandRepository:

    def find_by_id(self, store_id: int, brand_id: int) -> Optional[Brand]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(BRAND_SELECT + """
                WHERE b.store_id = %s AND b.id = %s AND b.deleted_at IS NULL
            """, (store_id, brand_id))
            row = cursor.fetchone()
            return Brand(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_name(self, store_id: int, name: str) -> Optional[Brand]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(BRAND_SELECT + """
                WHERE b.store_id = %s AND LOWER(b.name) = LOWER(%s) AND b.deleted_at IS NULL
            """, (store_id, name))
            row = cursor.fetchone()
            return Brand(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_all(
        self,
        store_id: int,
        search: Optional[str] = None,
        is_published: Optional[bool] = None,
        limit: int = 10,
        offset: int = 0
    ) -> Tuple[List[Brand], int]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["b.store_id = %s", "b.deleted_at IS NULL"]
            params = [store_id]

            if search:
                conditions.append("(b.name ILIKE %s OR b.slug ILIKE %s)")
                search_pattern = f"%{search}%"
                params.extend([search_pattern, search_pattern])

            if is_published is not None:
                conditions.append("b.is_published = %s")
                params.append(is_published)

            where_clause = " AND ".join(conditions)

            cursor.execute(f"""
                SELECT COUNT(*) as total
                FROM brands b
                WHERE {where_clause}
            """, params)
            total = cursor.fetchone()['total']

            cursor.execute(BRAND_SELECT + f"""
                WHERE {where_clause}
                ORDER BY b.name
                LIMIT %s OFFSET %s
            """, params + [limit, offset])

            return [Brand(**row) for row in cursor.fetchall()], total

        finally:
            cursor.close()
            conn.close()

    def slug_exists(self, store_id: int, slug: str, exclude_id: Optional[int] = None) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = "SELECT 1 FROM brands WHERE store_id = %s AND slug = %s AND deleted_at IS NULL"
            params = [store_id, slug]
            if exclude_id is not None:
                query += " AND id <> %s"
                params.append(exclude_id)
            cursor.execute(query, params)
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def create(self, store_id: int, data: dict) -> Brand:
        fields = {key: value for key, value in data.items() if key in WRITABLE_COLUMNS}
        columns = ['store_id'] + list(fields.keys())
        values = [store_id] + list(fields.values())

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO brands ({', '.join(columns)})
                VALUES ({', '.join(['%s'] * len(columns))})
                RETURNING id, store_id, name, slug, description, logo_url, website_url,
                          is_published, created_at, updated_at
            """, values)
            row = cursor.fetchone()
            conn.commit()
            return Brand(**row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update(self, store_id: int, brand_id: int, fields: dict) -> Optional[Brand]:
        fields = {key: value for key, value in fields.items() if key in WRITABLE_COLUMNS}
        if not fields:
            return self.find_by_id(store_id, brand_id)

        set_clauses = [f"{column} = %s" for column in fields]
        set_clauses.append("updated_at = NOW()")
        params = list(fields.values()) + [brand_id, store_id]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE brands
                SET {', '.join(set_clauses)}
                WHERE id = %s AND store_id = %s AND deleted_at IS NULL
            """, params)
            updated = cursor.rowcount > 0
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

        return self.find_by_id(store_id, brand_id) if updated else None

    def soft_delete(self, store_id: int, brand_id: int) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE brands SET deleted_at = NOW()
                WHERE id = %s AND store_id = %s AND deleted_at IS NULL
            """, (brand_id, store_id))
            deleted = cursor.rowcount > 0
            conn.commit()
            return deleted

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
