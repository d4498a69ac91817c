"""
Storefront Service
Read-only public catalog for a store resolved by slug. Only published,
non-deleted products and categories are ever returned.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from app.core.errors import NotFoundError
from app.domain.category import Category, CategoryNode
from app.domain.order import Order
from app.domain.product import Product, ProductStatus
from app.domain.store import Store
from app.repositories.category_repository import CategoryRepository
from app.repositories.order_repository import OrderRepository
from app.repositories.product_repository import ProductRepository
from app.repositories.store_repository import StoreRepository
from app.services.category_service import build_tree

logger = logging.getLogger(__name__)

FEATURED_LIMIT = 8
RELATED_LIMIT = 4


class StorefrontService:

    def __init__(self, store_repo: Optional[StoreRepository] = None,
                 product_repo: Optional[ProductRepository] = None,
                 category_repo: Optional[CategoryRepository] = None,
                 order_repo: Optional[OrderRepository] = None):
        self.store_repo = store_repo or StoreRepository()
        self.product_repo = product_repo or ProductRepository()
        self.category_repo = category_repo or CategoryRepository()
        self.order_repo = order_repo or OrderRepository()

    def get_store(self, slug: str) -> Store:
        store = self.store_repo.find_by_slug(slug)
        if store is None or not store.is_active:
            raise NotFoundError("Store")
        return store

    def _category(self, store_id: int, slug: str) -> Category:
        category = self.category_repo.find_by_slug(store_id, slug, published_only=True)
        if category is None:
            raise NotFoundError("Category")
        return category

    def list_products(self, store_id: int, category_slug: Optional[str] = None,
                      search: Optional[str] = None, min_price: Optional[Decimal] = None,
                      max_price: Optional[Decimal] = None, sort_by: str = "createdAt",
                      sort_order: str = "desc", limit: int = 12,
                      offset: int = 0) -> Tuple[List[Product], int]:
        category_ids = None
        if category_slug:
            category = self._category(store_id, category_slug)
            # A parent category also lists the products of its subcategories
            category_ids = [category.id] + self.category_repo.find_descendant_ids(store_id, category.id)

        return self.product_repo.find_all(
            store_id,
            search=search,
            status=ProductStatus.PUBLISHED,
            category_ids=category_ids,
            min_price=min_price,
            max_price=max_price,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )

    def get_product(self, store_id: int, slug: str) -> Product:
        product = self.product_repo.find_by_slug(store_id, slug, published_only=True)
        if product is None:
            raise NotFoundError("Product")
        return product

    def related_products(self, store_id: int, slug: str, limit: int = RELATED_LIMIT) -> List[Product]:
        return self.product_repo.find_related(store_id, self.get_product(store_id, slug), limit=limit)

    def featured_products(self, store_id: int, limit: int = FEATURED_LIMIT) -> List[Product]:
        products, _ = self.product_repo.find_all(
            store_id, status=ProductStatus.PUBLISHED, is_featured=True, limit=limit, offset=0,
        )
        return products

    def category_tree(self, store_id: int) -> List[CategoryNode]:
        return build_tree(self.category_repo.find_all(store_id, published_only=True))

    def get_category(self, store_id: int, slug: str) -> Category:
        return self._category(store_id, slug)

    def order_confirmation(self, store_id: int, order_number: str, email: str) -> Order:
        """Customers look up their own order with the number and the email used at checkout"""
        order = self.order_repo.find_by_number(store_id, order_number, customer_email=email)
        if order is None:
            raise NotFoundError("Order")
        return order
