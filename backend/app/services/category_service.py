"""
Category Service
Hierarchical categories: uniqueness, cycle prevention and tree building
"""
import logging
from typing import Dict, List, Optional

from app.core.auth import TokenUser
from app.core.errors import AlreadyExistsError, ConflictError, NotFoundError, ValidationError
from app.domain.base import slugify
from app.domain.category import Category, CategoryCreate, CategoryNode, CategoryUpdate
from app.repositories.category_repository import CategoryRepository
from app.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


def build_tree(categories: List[Category]) -> List[CategoryNode]:
    """
    Nest a flat list by parent_id. Categories whose parent is missing
    from the list (unpublished or deleted) become roots.
    """
    nodes: Dict[int, CategoryNode] = {
        category.id: CategoryNode(
            id=category.id,
            name=category.name,
            slug=category.slug,
            parent_id=category.parent_id,
            sort_order=category.sort_order,
            product_count=category.product_count,
        )
        for category in categories
    }

    roots = []
    for category in categories:
        node = nodes[category.id]
        parent = nodes.get(category.parent_id) if category.parent_id else None
        if parent is not None:
            parent.children.append(node)
        else:
            roots.append(node)

    def sort_nodes(items: List[CategoryNode]):
        items.sort(key=lambda node: (node.sort_order, node.name))
        for item in items:
            sort_nodes(item.children)

    sort_nodes(roots)
    return roots


class CategoryService:

    def __init__(self, repo: Optional[CategoryRepository] = None, audit: Optional[AuditService] = None):
        self.repo = repo or CategoryRepository()
        self.audit = audit or AuditService()

    def list(self, store_id: int, search: Optional[str] = None) -> List[Category]:
        return self.repo.find_all(store_id, search=search)

    def tree(self, store_id: int, published_only: bool = False) -> List[CategoryNode]:
        return build_tree(self.repo.find_all(store_id, published_only=published_only))

    def get(self, store_id: int, category_id: int) -> Category:
        category = self.repo.find_by_id(store_id, category_id)
        if category is None:
            raise NotFoundError("Category")
        return category

    def _check_parent(self, store_id: int, category_id: Optional[int], parent_id: Optional[int]):
        if parent_id is None:
            return
        if category_id is not None and parent_id == category_id:
            raise ValidationError("A category cannot be its own parent")
        if self.repo.find_by_id(store_id, parent_id) is None:
            raise NotFoundError("Parent category")
        if category_id is not None and parent_id in self.repo.find_descendant_ids(store_id, category_id):
            raise ValidationError("Cannot move a category under one of its descendants")

    def create(self, store_id: int, data: CategoryCreate, user: Optional[TokenUser] = None) -> Category:
        values = data.model_dump()
        values['slug'] = slugify(data.slug or data.name)

        if self.repo.slug_exists(store_id, values['slug']):
            raise AlreadyExistsError(f"Category slug '{values['slug']}' already exists")
        self._check_parent(store_id, None, data.parent_id)

        category = self.repo.create(store_id, values)
        self.audit.log(AuditAction.CREATE, "category", category.id, store_id=store_id, user=user,
                       changes={"name": category.name, "parentId": category.parent_id})
        return category

    def update(self, store_id: int, category_id: int, data: CategoryUpdate,
               user: Optional[TokenUser] = None) -> Category:
        self.get(store_id, category_id)
        fields = data.model_dump(exclude_unset=True)

        if fields.get('slug'):
            fields['slug'] = slugify(fields['slug'])
            if self.repo.slug_exists(store_id, fields['slug'], exclude_id=category_id):
                raise AlreadyExistsError(f"Category slug '{fields['slug']}' already exists")

        category = self.repo.update(store_id, category_id, fields)
        if category is None:
            raise NotFoundError("Category")
        self.audit.log(AuditAction.UPDATE, "category", category_id, store_id=store_id, user=user, changes=fields)
        return category

    def move(self, store_id: int, category_id: int, parent_id: Optional[int],
             user: Optional[TokenUser] = None) -> Category:
        current = self.get(store_id, category_id)
        self._check_parent(store_id, category_id, parent_id)

        category = self.repo.update(store_id, category_id, {"parent_id": parent_id})
        self.audit.log(AuditAction.UPDATE, "category", category_id, store_id=store_id, user=user,
                       changes={"parentId": {"from": current.parent_id, "to": parent_id}})
        return category

    def delete(self, store_id: int, category_id: int, user: Optional[TokenUser] = None):
        category = self.get(store_id, category_id)

        children = self.repo.count_children(store_id, category_id)
        if children > 0:
            raise ConflictError(
                f"Cannot delete category with {children} subcategories",
                details={"childCount": children}
            )
        if category.product_count > 0:
            raise ConflictError(
                f"Cannot delete category with {category.product_count} products",
                details={"productCount": category.product_count}
            )

        self.repo.soft_delete(store_id, category_id)
        self.audit.log(AuditAction.DELETE, "category", category_id, store_id=store_id, user=user)
