"""
Unit tests for ProductRepository

These tests validate repository logic without requiring a database connection.
"""
from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from app.domain.product import Product
from app.repositories.product_repository import ProductRepository


def product_row(**overrides):
    row = {
        'id': 10,
        'store_id': 1,
        'name': 'Classic Cotton Tee',
        'slug': 'classic-cotton-tee',
        'sku': 'TEE-001',
        'description': 'Soft cotton tee',
        'short_description': None,
        'price': Decimal('19.99'),
        'compare_at_price': Decimal('24.99'),
        'cost_price': Decimal('8.50'),
        'track_inventory': True,
        'inventory_qty': 3,
        'low_stock_threshold': 5,
        'weight': None,
        'status': 'PUBLISHED',
        'is_featured': False,
        'tags': ['cotton'],
        'images': None,
        'meta_title': None,
        'meta_description': None,
        'category_id': 4,
        'category_name': 'Shirts',
        'brand_id': None,
        'brand_name': None,
        'published_at': None,
        'created_at': datetime.now(),
        'updated_at': None,
    }
    row.update(overrides)
    return row


def mock_connection(mock_get_conn):
    mock_conn = MagicMock()
    mock_cursor = MagicMock()
    mock_get_conn.return_value = mock_conn
    mock_conn.cursor.return_value = mock_cursor
    return mock_conn, mock_cursor


class TestProductRepository:
    """Test ProductRepository methods"""

    @patch('app.repositories.product_repository.get_db_connection_dict')
    def test_find_by_id_returns_product(self, mock_get_conn):
        """find_by_id maps the row and loads variants and attributes"""
        # Arrange
        mock_conn, mock_cursor = mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = product_row()
        mock_cursor.fetchall.side_effect = [
            [{'id': 1, 'product_id': 10, 'name': 'Large', 'sku': 'TEE-001-L',
              'price': None, 'inventory_qty': 2, 'options': None}],
            [{'attribute_id': 3, 'name': 'Material', 'value': 'Cotton'}],
        ]

        # Act
        product = ProductRepository().find_by_id(1, 10)

        # Assert
        assert isinstance(product, Product)
        assert product.sku == 'TEE-001'
        assert product.images == []
        assert product.is_low_stock is True
        assert product.variants[0].options == {}
        assert product.attributes[0].value == 'Cotton'

        first_params = mock_cursor.execute.call_args_list[0][0][1]
        assert first_params == (1, 10)
        mock_cursor.close.assert_called_once()
        mock_conn.close.assert_called_once()

    @patch('app.repositories.product_repository.get_db_connection_dict')
    def test_find_by_id_returns_none_when_not_found(self, mock_get_conn):
        mock_conn, mock_cursor = mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = None

        product = ProductRepository().find_by_id(1, 999)

        assert product is None
        mock_conn.close.assert_called_once()

    @patch('app.repositories.product_repository.get_db_connection_dict')
    def test_find_all_applies_store_scope_and_filters(self, mock_get_conn):
        """Every query is scoped to the store and excludes soft-deleted rows"""
        mock_conn, mock_cursor = mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = {'total': 1}
        mock_cursor.fetchall.return_value = [product_row()]

        products, total = ProductRepository().find_all(
            1, search='tee', status='PUBLISHED', low_stock=True,
            sort_by='price', sort_order='asc', limit=20, offset=40
        )

        assert total == 1
        assert len(products) == 1

        count_sql, count_params = mock_cursor.execute.call_args_list[0][0]
        assert "p.store_id = %s" in count_sql
        assert "p.deleted_at IS NULL" in count_sql
        assert "p.inventory_qty <= p.low_stock_threshold" in count_sql
        assert count_params == [1, '%tee%', '%tee%', '%tee%', 'PUBLISHED']

        select_sql, select_params = mock_cursor.execute.call_args_list[1][0]
        assert "ORDER BY p.price ASC" in select_sql
        assert select_params[-2:] == [20, 40]

    @patch('app.repositories.product_repository.get_db_connection_dict')
    def test_unknown_sort_falls_back_to_created_at(self, mock_get_conn):
        mock_conn, mock_cursor = mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = {'total': 0}
        mock_cursor.fetchall.return_value = []

        ProductRepository().find_all(1, sort_by='price; DROP TABLE products')

        select_sql = mock_cursor.execute.call_args_list[1][0][0]
        assert "ORDER BY p.created_at DESC" in select_sql

    @patch('app.repositories.product_repository.get_db_connection_dict')
    def test_sku_exists_excludes_current_product(self, mock_get_conn):
        mock_conn, mock_cursor = mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = None

        exists = ProductRepository().sku_exists(1, 'TEE-001', exclude_id=10)

        assert exists is False
        sql, params = mock_cursor.execute.call_args[0]
        assert "id <> %s" in sql
        assert params == [1, 'TEE-001', 10]

    @patch('app.repositories.product_repository.get_db_connection_dict')
    def test_create_rolls_back_on_error(self, mock_get_conn):
        mock_conn, mock_cursor = mock_connection(mock_get_conn)
        mock_cursor.execute.side_effect = RuntimeError("insert failed")

        with pytest.raises(RuntimeError):
            ProductRepository().create(1, {'name': 'Tee', 'sku': 'TEE-1', 'slug': 'tee', 'price': 5})

        mock_conn.rollback.assert_called_once()
        mock_conn.commit.assert_not_called()
        mock_conn.close.assert_called_once()

    @patch('app.repositories.product_repository.get_db_connection_dict')
    def test_soft_delete(self, mock_get_conn):
        mock_conn, mock_cursor = mock_connection(mock_get_conn)
        mock_cursor.rowcount = 1

        assert ProductRepository().soft_delete(1, 10) is True
        sql, params = mock_cursor.execute.call_args[0]
        assert "deleted_at = NOW()" in sql
        assert params == (10, 1)
        mock_conn.commit.assert_called_once()
