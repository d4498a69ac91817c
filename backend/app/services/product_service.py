"""
Product Service
Catalog rules for products: plan limits, unique slug/SKU per store,
pricing constraints, publishing and stock adjustments

Author: Platform Team
Date: 2025-11-20
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from app.core.auth import TokenUser
from app.core.errors import (
    AlreadyExistsError, InsufficientInventoryError, NotFoundError, ValidationError,
)
from app.domain.base import slugify
from app.domain.product import (
    InventoryAdjustment, Product, ProductCreate, ProductStatus, ProductUpdate,
)
from app.repositories.brand_repository import BrandRepository
from app.repositories.category_repository import CategoryRepository
from app.repositories.product_repository import ProductRepository
from app.services.audit_service import AuditAction, AuditService, diff_changes
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


class ProductService:

    def __init__(self, repo: Optional[ProductRepository] = None,
                 category_repo: Optional[CategoryRepository] = None,
                 brand_repo: Optional[BrandRepository] = None,
                 subscriptions: Optional[SubscriptionService] = None,
                 audit: Optional[AuditService] = None):
        self.repo = repo or ProductRepository()
        self.category_repo = category_repo or CategoryRepository()
        self.brand_repo = brand_repo or BrandRepository()
        self.subscriptions = subscriptions or SubscriptionService()
        self.audit = audit or AuditService()

    def list(self, store_id: int, search: Optional[str] = None, status: Optional[str] = None,
             category_id: Optional[int] = None, brand_id: Optional[int] = None,
             low_stock: bool = False, sort_by: str = "createdAt", sort_order: str = "desc",
             limit: int = 10, offset: int = 0) -> Tuple[List[Product], int]:
        return self.repo.find_all(
            store_id,
            search=search,
            status=status,
            category_ids=[category_id] if category_id else None,
            brand_id=brand_id,
            low_stock=low_stock,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )

    def get(self, store_id: int, product_id: int) -> Product:
        product = self.repo.find_by_id(store_id, product_id)
        if product is None:
            raise NotFoundError("Product")
        return product

    def _check_references(self, store_id: int, category_id: Optional[int], brand_id: Optional[int]):
        if category_id is not None and self.category_repo.find_by_id(store_id, category_id) is None:
            raise NotFoundError("Category")
        if brand_id is not None and self.brand_repo.find_by_id(store_id, brand_id) is None:
            raise NotFoundError("Brand")

    def unique_slug(self, store_id: int, name: str, exclude_id: Optional[int] = None) -> str:
        """Slug from name, suffixed -2, -3 ... until free"""
        base = slugify(name)
        slug = base
        suffix = 2
        while self.repo.slug_exists(store_id, slug, exclude_id=exclude_id):
            slug = f"{base}-{suffix}"
            suffix += 1
        return slug

    def create(self, store_id: int, data: ProductCreate, user: Optional[TokenUser] = None) -> Product:
        self.subscriptions.ensure_can_create_product(store_id)

        values = data.model_dump()
        if data.slug:
            values['slug'] = slugify(data.slug)
            if self.repo.slug_exists(store_id, values['slug']):
                raise AlreadyExistsError(f"Product slug '{values['slug']}' already exists")
        else:
            values['slug'] = self.unique_slug(store_id, data.name)

        if self.repo.sku_exists(store_id, data.sku):
            raise AlreadyExistsError(f"SKU '{data.sku}' already exists")

        self._check_references(store_id, data.category_id, data.brand_id)

        if data.status == ProductStatus.PUBLISHED:
            values['published_at'] = datetime.now(timezone.utc)

        product = self.repo.create(store_id, values)
        logger.info(f"Created product {product.id} ({product.sku}) in store {store_id}")
        self.audit.log(AuditAction.CREATE, "product", product.id, store_id=store_id, user=user,
                       changes={"name": product.name, "sku": product.sku, "price": product.price})
        return product

    def update(self, store_id: int, product_id: int, data: ProductUpdate,
               user: Optional[TokenUser] = None) -> Product:
        current = self.get(store_id, product_id)
        fields = data.model_dump(exclude_unset=True)

        if fields.get('slug'):
            fields['slug'] = slugify(fields['slug'])
            if self.repo.slug_exists(store_id, fields['slug'], exclude_id=product_id):
                raise AlreadyExistsError(f"Product slug '{fields['slug']}' already exists")

        if fields.get('sku') and self.repo.sku_exists(store_id, fields['sku'], exclude_id=product_id):
            raise AlreadyExistsError(f"SKU '{fields['sku']}' already exists")

        price = fields.get('price', current.price)
        compare_at_price = fields.get('compare_at_price', current.compare_at_price)
        if compare_at_price is not None and price is not None and compare_at_price <= price:
            raise ValidationError("compare_at_price must be greater than price")

        self._check_references(store_id, fields.get('category_id'), fields.get('brand_id'))

        if fields.get('status') == ProductStatus.PUBLISHED and current.published_at is None:
            fields['published_at'] = datetime.now(timezone.utc)

        product = self.repo.update(store_id, product_id, fields)
        if product is None:
            raise NotFoundError("Product")

        self.audit.log(AuditAction.UPDATE, "product", product_id, store_id=store_id, user=user,
                       changes=diff_changes(current.model_dump(include=set(fields)), fields))
        return product

    def delete(self, store_id: int, product_id: int, user: Optional[TokenUser] = None):
        if not self.repo.soft_delete(store_id, product_id):
            raise NotFoundError("Product")
        self.audit.log(AuditAction.DELETE, "product", product_id, store_id=store_id, user=user)

    def adjust_inventory(self, store_id: int, product_id: int, adjustment: InventoryAdjustment,
                         user: Optional[TokenUser] = None) -> Product:
        current = self.get(store_id, product_id)

        new_quantity = self.repo.adjust_inventory(store_id, product_id, adjustment.quantity)
        if new_quantity is None:
            raise InsufficientInventoryError(
                f"Cannot remove {-adjustment.quantity} units; only {current.inventory_qty} in stock",
                details={"available": current.inventory_qty, "requested": adjustment.quantity}
            )

        self.audit.log(AuditAction.UPDATE, "product", product_id, store_id=store_id, user=user,
                       changes={"inventoryQty": {"from": current.inventory_qty, "to": new_quantity}},
                       metadata={"reason": adjustment.reason} if adjustment.reason else None)

        current.inventory_qty = new_quantity
        return current
