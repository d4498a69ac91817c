"""
Category Repository - hierarchical product categories per store
"""
from typing import List, Optional
from app.domain.category import Category
from app.core.database import get_db_connection_dict


CATEGORY_SELECT = """
    SELECT
        c.id, c.store_id, c.parent_id, c.name, c.slug, c.description, c.image_url,
        c.sort_order, c.is_published, c.created_at, c.updated_at,
        (SELECT COUNT(*) FROM products p
         WHERE p.category_id = c.id AND p.deleted_at IS NULL) as product_count
    FROM categories c
"""

WRITABLE_COLUMNS = ('name', 'slug', 'parent_id', 'description', 'image_url', 'sort_order', 'is_published')


class CategoryRepository:

    def find_by_id(self, store_id: int, category_id: int) -> Optional[Category]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(CATEGORY_SELECT + """
                WHERE c.store_id = %s AND c.id = %s AND c.deleted_at IS NULL
            """, (store_id, category_id))
            row = cursor.fetchone()
            return Category(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_slug(self, store_id: int, slug: str, published_only: bool = False) -> Optional[Category]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = CATEGORY_SELECT + """
                WHERE c.store_id = %s AND c.slug = %s AND c.deleted_at IS NULL
            """
            if published_only:
                query += " AND c.is_published = TRUE"
            cursor.execute(query, (store_id, slug))
            row = cursor.fetchone()
            return Category(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_name(self, store_id: int, name: str, parent_id: Optional[int]) -> Optional[Category]:
        """Case-insensitive lookup among the children of parent_id (None = root)"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(CATEGORY_SELECT + """
                WHERE c.store_id = %s AND LOWER(c.name) = LOWER(%s)
                  AND c.parent_id IS NOT DISTINCT FROM %s
                  AND c.deleted_at IS NULL
            """, (store_id, name, parent_id))
            row = cursor.fetchone()
            return Category(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_all(self, store_id: int, published_only: bool = False,
                 search: Optional[str] = None) -> List[Category]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["c.store_id = %s", "c.deleted_at IS NULL"]
            params = [store_id]

            if published_only:
                conditions.append("c.is_published = TRUE")

            if search:
                conditions.append("c.name ILIKE %s")
                params.append(f"%{search}%")

            cursor.execute(CATEGORY_SELECT + f"""
                WHERE {' AND '.join(conditions)}
                ORDER BY c.sort_order, c.name
            """, params)
            return [Category(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_descendant_ids(self, store_id: int, category_id: int) -> List[int]:
        """Ids of every category below category_id (not including itself)"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                WITH RECURSIVE tree AS (
                    SELECT id FROM categories
                    WHERE parent_id = %s AND store_id = %s AND deleted_at IS NULL
                    UNION ALL
                    SELECT c.id FROM categories c
                    JOIN tree t ON c.parent_id = t.id
                    WHERE c.deleted_at IS NULL
                )
                SELECT id FROM tree
            """, (category_id, store_id))
            return [row['id'] for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def slug_exists(self, store_id: int, slug: str, exclude_id: Optional[int] = None) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = "SELECT 1 FROM categories WHERE store_id = %s AND slug = %s AND deleted_at IS NULL"
            params = [store_id, slug]
            if exclude_id is not None:
                query += " AND id <> %s"
                params.append(exclude_id)
            cursor.execute(query, params)
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def count_children(self, store_id: int, category_id: int) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT COUNT(*) as total FROM categories
                WHERE store_id = %s AND parent_id = %s AND deleted_at IS NULL
            """, (store_id, category_id))
            return cursor.fetchone()['total']

        finally:
            cursor.close()
            conn.close()

    def create(self, store_id: int, data: dict) -> Category:
        fields = {key: value for key, value in data.items() if key in WRITABLE_COLUMNS}
        columns = ['store_id'] + list(fields.keys())
        values = [store_id] + list(fields.values())

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO categories ({', '.join(columns)})
                VALUES ({', '.join(['%s'] * len(columns))})
                RETURNING id, store_id, parent_id, name, slug, description, image_url,
                          sort_order, is_published, created_at, updated_at
            """, values)
            row = cursor.fetchone()
            conn.commit()
            return Category(**row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update(self, store_id: int, category_id: int, fields: dict) -> Optional[Category]:
        fields = {key: value for key, value in fields.items() if key in WRITABLE_COLUMNS}
        if not fields:
            return self.find_by_id(store_id, category_id)

        set_clauses = [f"{column} = %s" for column in fields]
        set_clauses.append("updated_at = NOW()")
        params = list(fields.values()) + [category_id, store_id]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE categories
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

        return self.find_by_id(store_id, category_id) if updated else None

    def soft_delete(self, store_id: int, category_id: int) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE categories SET deleted_at = NOW()
                WHERE id = %s AND store_id = %s AND deleted_at IS NULL
            """, (category_id, store_id))
            deleted = cursor.rowcount > 0
            conn.commit()
            return deleted

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
