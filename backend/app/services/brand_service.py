"""
Brand Service
"""
import logging
from typing import List, Optional, Tuple

from app.core.auth import TokenUser
from app.core.errors import AlreadyExistsError, ConflictError, NotFoundError
from app.domain.base import slugify
from app.domain.brand import Brand, BrandCreate, BrandUpdate
from app.repositories.brand_repository import BrandRepository
from app.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


class BrandService:

    def __init__(self, repo: Optional[BrandRepository] = None, audit: Optional[AuditService] = None):
        self.repo = repo or BrandRepository()
        self.audit = audit or AuditService()

    def list(self, store_id: int, search: Optional[str] = None, is_published: Optional[bool] = None,
             limit: int = 10, offset: int = 0) -> Tuple[List[Brand], int]:
        return self.repo.find_all(store_id, search=search, is_published=is_published,
                                  limit=limit, offset=offset)

    def get(self, store_id: int, brand_id: int) -> Brand:
        brand = self.repo.find_by_id(store_id, brand_id)
        if brand is None:
            raise NotFoundError("Brand")
        return brand

    def create(self, store_id: int, data: BrandCreate, user: Optional[TokenUser] = None) -> Brand:
        values = data.model_dump()
        values['slug'] = slugify(data.slug or data.name)

        if self.repo.slug_exists(store_id, values['slug']):
            raise AlreadyExistsError(f"Brand slug '{values['slug']}' already exists")

        brand = self.repo.create(store_id, values)
        self.audit.log(AuditAction.CREATE, "brand", brand.id, store_id=store_id, user=user,
                       changes={"name": brand.name, "slug": brand.slug})
        return brand

    def update(self, store_id: int, brand_id: int, data: BrandUpdate,
               user: Optional[TokenUser] = None) -> Brand:
        self.get(store_id, brand_id)
        fields = data.model_dump(exclude_unset=True)

        if fields.get('slug'):
            fields['slug'] = slugify(fields['slug'])
            if self.repo.slug_exists(store_id, fields['slug'], exclude_id=brand_id):
                raise AlreadyExistsError(f"Brand slug '{fields['slug']}' already exists")

        brand = self.repo.update(store_id, brand_id, fields)
        if brand is None:
            raise NotFoundError("Brand")
        self.audit.log(AuditAction.UPDATE, "brand", brand_id, store_id=store_id, user=user, changes=fields)
        return brand

    def delete(self, store_id: int, brand_id: int, user: Optional[TokenUser] = None):
        brand = self.get(store_id, brand_id)
        if brand.product_count > 0:
            raise ConflictError(
                f"Cannot delete brand with {brand.product_count} products",
                details={"productCount": brand.product_count}
            )
        self.repo.soft_delete(store_id, brand_id)
        self.audit.log(AuditAction.DELETE, "brand", brand_id, store_id=store_id, user=user)
