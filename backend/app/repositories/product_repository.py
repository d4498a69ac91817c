"""
Product Repository - Data Access Layer for Products

Handles all database queries for products and returns Product domain models.
Every query is scoped to a store and ignores soft-deleted rows.
"""
from typing import Dict, List, Optional, Tuple
from psycopg2.extras import Json
from app.domain.product import Product, ProductVariant, ProductAttributeValue
from app.core.database import get_db_connection_dict


PRODUCT_SELECT = """
    SELECT
        p.id, p.store_id, p.name, p.slug, p.sku, p.description, p.short_description,
        p.price, p.compare_at_price, p.cost_price,
        p.track_inventory, p.inventory_qty, p.low_stock_threshold, p.weight,
        p.status, p.is_featured, p.tags, p.images, p.meta_title, p.meta_description,
        p.category_id, c.name as category_name,
        p.brand_id, b.name as brand_name,
        p.published_at, p.created_at, p.updated_at
    FROM products p
    LEFT JOIN categories c ON c.id = p.category_id
    LEFT JOIN brands b ON b.id = p.brand_id
"""

WRITABLE_COLUMNS = (
    'name', 'slug', 'sku', 'description', 'short_description',
    'price', 'compare_at_price', 'cost_price',
    'track_inventory', 'inventory_qty', 'low_stock_threshold', 'weight',
    'status', 'is_featured', 'tags', 'images', 'meta_title', 'meta_description',
    'category_id', 'brand_id', 'published_at',
)

JSON_COLUMNS = {'tags', 'images'}

SORT_COLUMNS = {
    'createdAt': 'p.created_at',
    'name': 'p.name',
    'price': 'p.price',
    'inventory': 'p.inventory_qty',
}


class ProductRepository:
    """
    Repository for Product data access

    All SQL queries for products are centralized here.
    Returns Product domain models, not raw dictionaries.
    """

    @staticmethod
    def _map_row_to_product(row: dict) -> Product:
        return Product(
            id=row['id'],
            store_id=row['store_id'],
            name=row['name'],
            slug=row['slug'],
            sku=row['sku'],
            description=row.get('description'),
            short_description=row.get('short_description'),
            price=row['price'],
            compare_at_price=row.get('compare_at_price'),
            cost_price=row.get('cost_price'),
            track_inventory=row.get('track_inventory', True),
            inventory_qty=row.get('inventory_qty') or 0,
            low_stock_threshold=row.get('low_stock_threshold') if row.get('low_stock_threshold') is not None else 5,
            weight=row.get('weight'),
            status=row['status'],
            is_featured=row.get('is_featured') or False,
            tags=row.get('tags') or [],
            images=row.get('images') or [],
            meta_title=row.get('meta_title'),
            meta_description=row.get('meta_description'),
            category_id=row.get('category_id'),
            category_name=row.get('category_name'),
            brand_id=row.get('brand_id'),
            brand_name=row.get('brand_name'),
            published_at=row.get('published_at'),
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at')
        )

    @staticmethod
    def _db_value(column: str, value):
        return Json(value) if column in JSON_COLUMNS and value is not None else value

    def _load_details(self, cursor, product: Product) -> Product:
        cursor.execute("""
            SELECT id, product_id, name, sku, price, inventory_qty, options
            FROM product_variants
            WHERE product_id = %s AND deleted_at IS NULL
            ORDER BY id
        """, (product.id,))
        product.variants = [
            ProductVariant(**{**row, 'options': row.get('options') or {}})
            for row in cursor.fetchall()
        ]

        cursor.execute("""
            SELECT pa.attribute_id, a.name, pa.value
            FROM product_attributes pa
            JOIN attributes a ON a.id = pa.attribute_id
            WHERE pa.product_id = %s
            ORDER BY a.name
        """, (product.id,))
        product.attributes = [ProductAttributeValue(**row) for row in cursor.fetchall()]
        return product

    def _find_one(self, store_id: int, where: str, params: tuple, include_details: bool) -> Optional[Product]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(PRODUCT_SELECT + f"""
                WHERE p.store_id = %s AND p.deleted_at IS NULL AND {where}
            """, (store_id,) + params)

            row = cursor.fetchone()
            if not row:
                return None

            product = self._map_row_to_product(row)
            if include_details:
                product = self._load_details(cursor, product)
            return product

        finally:
            cursor.close()
            conn.close()

    def find_by_id(self, store_id: int, product_id: int, include_details: bool = True) -> Optional[Product]:
        """
        Find product by ID within a store

        Returns:
            Product (with variants and attributes) or None if not found
        """
        return self._find_one(store_id, "p.id = %s", (product_id,), include_details)

    def find_by_slug(self, store_id: int, slug: str, published_only: bool = False) -> Optional[Product]:
        where = "p.slug = %s"
        if published_only:
            where += " AND p.status = 'PUBLISHED'"
        return self._find_one(store_id, where, (slug,), include_details=True)

    def find_by_sku(self, store_id: int, sku: str) -> Optional[Product]:
        return self._find_one(store_id, "p.sku = %s", (sku,), include_details=False)

    def find_all(
        self,
        store_id: int,
        search: Optional[str] = None,
        status: Optional[str] = None,
        category_ids: Optional[List[int]] = None,
        brand_id: Optional[int] = None,
        is_featured: Optional[bool] = None,
        low_stock: bool = False,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort_by: str = 'createdAt',
        sort_order: str = 'desc',
        limit: int = 10,
        offset: int = 0
    ) -> Tuple[List[Product], int]:
        """
        Find products with filters

        Args:
            store_id: Owning store
            search: Search in name, SKU or description
            status: DRAFT / PUBLISHED / ARCHIVED
            category_ids: Any of these categories
            low_stock: Only tracked products at or below their threshold
            min_price / max_price: Price range
            sort_by: createdAt, name, price or inventory

        Returns:
            Tuple of (list of products, total count)
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["p.store_id = %s", "p.deleted_at IS NULL"]
            params = [store_id]

            if search:
                conditions.append("(p.name ILIKE %s OR p.sku ILIKE %s OR p.description ILIKE %s)")
                search_pattern = f"%{search}%"
                params.extend([search_pattern, search_pattern, search_pattern])

            if status:
                conditions.append("p.status = %s")
                params.append(status)

            if category_ids:
                conditions.append("p.category_id = ANY(%s)")
                params.append(list(category_ids))

            if brand_id is not None:
                conditions.append("p.brand_id = %s")
                params.append(brand_id)

            if is_featured is not None:
                conditions.append("p.is_featured = %s")
                params.append(is_featured)

            if low_stock:
                conditions.append("p.track_inventory = TRUE AND p.inventory_qty <= p.low_stock_threshold")

            if min_price is not None:
                conditions.append("p.price >= %s")
                params.append(min_price)

            if max_price is not None:
                conditions.append("p.price <= %s")
                params.append(max_price)

            where_clause = " AND ".join(conditions)

            cursor.execute(f"""
                SELECT COUNT(*) as total
                FROM products p
                WHERE {where_clause}
            """, params)
            total = cursor.fetchone()['total']

            order_column = SORT_COLUMNS.get(sort_by, 'p.created_at')
            direction = 'ASC' if sort_order == 'asc' else 'DESC'

            cursor.execute(PRODUCT_SELECT + f"""
                WHERE {where_clause}
                ORDER BY {order_column} {direction}, p.id {direction}
                LIMIT %s OFFSET %s
            """, params + [limit, offset])

            products = [self._map_row_to_product(row) for row in cursor.fetchall()]
            return products, total

        finally:
            cursor.close()
            conn.close()

    def find_by_ids(self, store_id: int, product_ids: List[int]) -> Dict[int, Product]:
        """Batch fetch for cart validation, keyed by id"""
        if not product_ids:
            return {}

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(PRODUCT_SELECT + """
                WHERE p.store_id = %s AND p.deleted_at IS NULL AND p.id = ANY(%s)
            """, (store_id, list(product_ids)))
            return {row['id']: self._map_row_to_product(row) for row in cursor.fetchall()}

        finally:
            cursor.close()
            conn.close()

    def find_variants_by_ids(self, variant_ids: List[int]) -> Dict[int, ProductVariant]:
        if not variant_ids:
            return {}

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, product_id, name, sku, price, inventory_qty, options
                FROM product_variants
                WHERE id = ANY(%s) AND deleted_at IS NULL
            """, (list(variant_ids),))
            return {
                row['id']: ProductVariant(**{**row, 'options': row.get('options') or {}})
                for row in cursor.fetchall()
            }

        finally:
            cursor.close()
            conn.close()

    def find_related(self, store_id: int, product: Product, limit: int = 4) -> List[Product]:
        """Published products from the same category, excluding the product itself"""
        if product.category_id is None:
            return []

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(PRODUCT_SELECT + """
                WHERE p.store_id = %s AND p.deleted_at IS NULL AND p.status = 'PUBLISHED'
                  AND p.category_id = %s AND p.id <> %s
                ORDER BY p.is_featured DESC, p.created_at DESC
                LIMIT %s
            """, (store_id, product.category_id, product.id, limit))
            return [self._map_row_to_product(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def _exists(self, store_id: int, column: str, value: str, exclude_id: Optional[int]) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = f"SELECT 1 FROM products WHERE store_id = %s AND {column} = %s AND deleted_at IS NULL"
            params = [store_id, value]
            if exclude_id is not None:
                query += " AND id <> %s"
                params.append(exclude_id)
            cursor.execute(query, params)
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def slug_exists(self, store_id: int, slug: str, exclude_id: Optional[int] = None) -> bool:
        return self._exists(store_id, "slug", slug, exclude_id)

    def sku_exists(self, store_id: int, sku: str, exclude_id: Optional[int] = None) -> bool:
        return self._exists(store_id, "sku", sku, exclude_id)

    def create(self, store_id: int, data: dict) -> Product:
        fields = {key: value for key, value in data.items() if key in WRITABLE_COLUMNS}
        columns = ['store_id'] + list(fields.keys())
        values = [store_id] + [self._db_value(column, value) for column, value in fields.items()]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO products ({', '.join(columns)})
                VALUES ({', '.join(['%s'] * len(columns))})
                RETURNING id
            """, values)
            product_id = cursor.fetchone()['id']
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

        return self.find_by_id(store_id, product_id)

    def update(self, store_id: int, product_id: int, fields: dict) -> Optional[Product]:
        fields = {key: value for key, value in fields.items() if key in WRITABLE_COLUMNS}
        if not fields:
            return self.find_by_id(store_id, product_id)

        set_clauses = [f"{column} = %s" for column in fields]
        set_clauses.append("updated_at = NOW()")
        params = [self._db_value(column, value) for column, value in fields.items()]
        params.extend([product_id, store_id])

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE products
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

        return self.find_by_id(store_id, product_id) if updated else None

    def soft_delete(self, store_id: int, product_id: int) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE products SET deleted_at = NOW()
                WHERE id = %s AND store_id = %s AND deleted_at IS NULL
            """, (product_id, store_id))
            deleted = cursor.rowcount > 0
            conn.commit()
            return deleted

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def adjust_inventory(self, store_id: int, product_id: int, delta: int) -> Optional[int]:
        """
        Atomically add delta to inventory_qty.

        Returns:
            New quantity, or None when the product is missing or the
            result would be negative (nothing is written in that case)
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE products
                SET inventory_qty = inventory_qty + %s, updated_at = NOW()
                WHERE id = %s AND store_id = %s AND deleted_at IS NULL
                  AND inventory_qty + %s >= 0
                RETURNING inventory_qty
            """, (delta, product_id, store_id, delta))
            row = cursor.fetchone()
            conn.commit()
            return row['inventory_qty'] if row else None

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    # ------------------------------------------------------------------
    # CSV export
    # ------------------------------------------------------------------

    @staticmethod
    def _export_where(store_id: int, filters: dict) -> Tuple[str, list]:
        conditions = ["p.store_id = %s", "p.deleted_at IS NULL"]
        params = [store_id]

        if filters.get('status'):
            conditions.append("p.status = %s")
            params.append(filters['status'])

        if filters.get('search'):
            conditions.append("(p.name ILIKE %s OR p.sku ILIKE %s)")
            search_pattern = f"%{filters['search']}%"
            params.extend([search_pattern, search_pattern])

        if filters.get('category_id'):
            conditions.append("p.category_id = %s")
            params.append(filters['category_id'])

        return " AND ".join(conditions), params

    def count_for_export(self, store_id: int, filters: dict) -> int:
        where_clause, params = self._export_where(store_id, filters)

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"SELECT COUNT(*) as total FROM products p WHERE {where_clause}", params)
            return cursor.fetchone()['total']

        finally:
            cursor.close()
            conn.close()

    def fetch_export_batch(self, store_id: int, filters: dict, limit: int, offset: int) -> List[dict]:
        where_clause, params = self._export_where(store_id, filters)

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT
                    p.name, p.sku, p.price, p.compare_at_price, p.inventory_qty,
                    p.status, c.name as category_name, b.name as brand_name, p.created_at
                FROM products p
                LEFT JOIN categories c ON c.id = p.category_id
                LEFT JOIN brands b ON b.id = p.brand_id
                WHERE {where_clause}
                ORDER BY p.created_at DESC, p.id DESC
                LIMIT %s OFFSET %s
            """, params + [limit, offset])
            return cursor.fetchall()

        finally:
            cursor.close()
            conn.close()
