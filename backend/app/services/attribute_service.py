"""
Attribute Service
Store-level product attributes (Color, Size, ...) and their allowed values
"""
import logging
from typing import List, Optional, Tuple

from app.core.auth import TokenUser
from app.core.errors import AlreadyExistsError, ConflictError, NotFoundError, ValidationError
from app.domain.attribute import Attribute, AttributeCreate, AttributeUpdate
from app.repositories.attribute_repository import AttributeRepository
from app.repositories.product_repository import ProductRepository
from app.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


class AttributeService:

    def __init__(self, repo: Optional[AttributeRepository] = None,
                 product_repo: Optional[ProductRepository] = None,
                 audit: Optional[AuditService] = None):
        self.repo = repo or AttributeRepository()
        self.product_repo = product_repo or ProductRepository()
        self.audit = audit or AuditService()

    def list(self, store_id: int, search: Optional[str] = None,
             limit: int = 10, offset: int = 0) -> Tuple[List[Attribute], int]:
        return self.repo.find_all(store_id, search=search, limit=limit, offset=offset)

    def get(self, store_id: int, attribute_id: int) -> Attribute:
        attribute = self.repo.find_by_id(store_id, attribute_id)
        if attribute is None:
            raise NotFoundError("Attribute")
        return attribute

    def create(self, store_id: int, data: AttributeCreate, user: Optional[TokenUser] = None) -> Attribute:
        if self.repo.name_exists(store_id, data.name):
            raise AlreadyExistsError(f"Attribute '{data.name}' already exists")

        attribute = self.repo.create(store_id, data.name, data.values)
        self.audit.log(AuditAction.CREATE, "attribute", attribute.id, store_id=store_id, user=user,
                       changes={"name": data.name, "values": data.values})
        return attribute

    def update(self, store_id: int, attribute_id: int, data: AttributeUpdate,
               user: Optional[TokenUser] = None) -> Attribute:
        current = self.get(store_id, attribute_id)

        if data.name and self.repo.name_exists(store_id, data.name, exclude_id=attribute_id):
            raise AlreadyExistsError(f"Attribute '{data.name}' already exists")

        if data.values is not None:
            removed = [value for value in current.values if value not in data.values]
            self._ensure_not_in_use(attribute_id, removed)

        attribute = self.repo.update(store_id, attribute_id, name=data.name, values=data.values)
        self.audit.log(AuditAction.UPDATE, "attribute", attribute_id, store_id=store_id, user=user,
                       changes=data.model_dump(exclude_unset=True))
        return attribute

    def _ensure_not_in_use(self, attribute_id: int, values: List[str]):
        in_use = self.repo.values_in_use(attribute_id, values)
        if in_use:
            raise ConflictError(
                f"Values in use by products cannot be removed: {', '.join(in_use)}",
                details={"values": in_use}
            )

    def add_values(self, store_id: int, attribute_id: int, values: List[str],
                   user: Optional[TokenUser] = None) -> Attribute:
        current = self.get(store_id, attribute_id)
        merged = list(current.values) + [value for value in values if value not in current.values]
        if len(merged) == len(current.values):
            return current

        attribute = self.repo.update(store_id, attribute_id, values=merged)
        self.audit.log(AuditAction.UPDATE, "attribute", attribute_id, store_id=store_id, user=user,
                       changes={"addedValues": [value for value in merged if value not in current.values]})
        return attribute

    def remove_values(self, store_id: int, attribute_id: int, values: List[str],
                      user: Optional[TokenUser] = None) -> Attribute:
        current = self.get(store_id, attribute_id)
        remaining = [value for value in current.values if value not in values]

        if not remaining:
            raise ValidationError("An attribute must keep at least one value")
        self._ensure_not_in_use(attribute_id, [value for value in values if value in current.values])

        attribute = self.repo.update(store_id, attribute_id, values=remaining)
        self.audit.log(AuditAction.UPDATE, "attribute", attribute_id, store_id=store_id, user=user,
                       changes={"removedValues": values})
        return attribute

    def delete(self, store_id: int, attribute_id: int, user: Optional[TokenUser] = None):
        attribute = self.get(store_id, attribute_id)
        if attribute.product_count > 0:
            raise ConflictError(
                f"Cannot delete attribute assigned to {attribute.product_count} products",
                details={"productCount": attribute.product_count}
            )
        self.repo.delete(store_id, attribute_id)
        self.audit.log(AuditAction.DELETE, "attribute", attribute_id, store_id=store_id, user=user)

    def assign_to_product(self, store_id: int, attribute_id: int, product_id: int, value: str,
                          user: Optional[TokenUser] = None):
        attribute = self.get(store_id, attribute_id)
        if value not in attribute.values:
            raise ValidationError(
                f"'{value}' is not a value of attribute {attribute.name}",
                details={"allowedValues": attribute.values}
            )
        if self.product_repo.find_by_id(store_id, product_id, include_details=False) is None:
            raise NotFoundError("Product")

        self.repo.assign_to_product(product_id, attribute_id, value)
        self.audit.log(AuditAction.UPDATE, "product", product_id, store_id=store_id, user=user,
                       changes={"attribute": attribute.name, "value": value})
