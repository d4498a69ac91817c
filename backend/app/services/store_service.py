"""
Store Service
Tenant lifecycle: new stores start on the FREE plan with their owner as STORE_ADMIN
"""
import logging
from typing import List, Optional, Tuple

from app.core.auth import Role, TokenUser
from app.core.errors import AlreadyExistsError, NotFoundError
from app.domain.store import Store, StoreCreate, StoreUpdate
from app.domain.subscription import SubscriptionPlan, SubscriptionStatus
from app.repositories.store_repository import StoreRepository
from app.repositories.user_repository import UserRepository
from app.services.audit_service import AuditAction, AuditService, diff_changes
from app.services.subscription_service import get_plan_details

logger = logging.getLogger(__name__)


class StoreService:

    def __init__(self, repo: Optional[StoreRepository] = None,
                 user_repo: Optional[UserRepository] = None,
                 audit: Optional[AuditService] = None):
        self.repo = repo or StoreRepository()
        self.user_repo = user_repo or UserRepository()
        self.audit = audit or AuditService()

    def list(self, user: TokenUser, search: Optional[str] = None, plan: Optional[str] = None,
             limit: int = 10, offset: int = 0) -> Tuple[List[Store], int]:
        """Super admins see every store; everyone else only their own"""
        return self.repo.find_all(
            search=search,
            member_user_id=None if user.is_super_admin else user.id,
            subscription_plan=plan,
            limit=limit,
            offset=offset,
        )

    def get(self, store_id: int) -> Store:
        store = self.repo.find_by_id(store_id)
        if store is None:
            raise NotFoundError("Store")
        return store

    def create(self, data: StoreCreate, user: TokenUser) -> Store:
        if self.repo.slug_exists(data.slug):
            raise AlreadyExistsError(f"Store slug '{data.slug}' is already taken")

        owner_id = data.owner_id or user.id
        if owner_id != user.id and self.user_repo.find_by_id(owner_id) is None:
            raise NotFoundError("Owner")

        admin_role = self.user_repo.find_role_by_name(Role.STORE_ADMIN)
        if admin_role is None:
            raise NotFoundError("STORE_ADMIN role")

        plan = get_plan_details(SubscriptionPlan.FREE)
        values = data.model_dump(exclude={"owner_id"})
        values.update(
            subscription_plan=plan.plan,
            subscription_status=SubscriptionStatus.ACTIVE,
            product_limit=plan.stored_product_limit,
            order_limit=plan.stored_order_limit,
        )

        store = self.repo.create(values, owner_id=owner_id, owner_role_id=admin_role.id)
        logger.info(f"Created store {store.id} ({store.slug}) owned by user {owner_id}")
        self.audit.log(AuditAction.CREATE, "store", store.id, store_id=store.id, user=user,
                       changes={"name": store.name, "slug": store.slug, "ownerId": owner_id})
        return store

    def update(self, store_id: int, data: StoreUpdate, user: TokenUser) -> Store:
        current = self.get(store_id)
        fields = data.model_dump(exclude_unset=True)

        store = self.repo.update(store_id, fields)
        if store is None:
            raise NotFoundError("Store")

        self.audit.log(AuditAction.UPDATE, "store", store_id, store_id=store_id, user=user,
                       changes=diff_changes(current.model_dump(include=set(fields)), fields))
        return store

    def delete(self, store_id: int, user: TokenUser):
        if not self.repo.soft_delete(store_id):
            raise NotFoundError("Store")
        logger.info(f"Store {store_id} deleted by user {user.id}")
        self.audit.log(AuditAction.DELETE, "store", store_id, store_id=store_id, user=user)
