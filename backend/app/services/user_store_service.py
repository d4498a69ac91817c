"""
Store membership service
Assigns users to stores with a role; the role's permission list drives RBAC
"""
import logging
from typing import List, Optional

from app.core.auth import TokenUser
from app.core.errors import NotFoundError, ValidationError
from app.domain.store import Membership
from app.repositories.store_repository import StoreRepository
from app.repositories.user_repository import UserRepository
from app.repositories.user_store_repository import UserStoreRepository
from app.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


class UserStoreService:

    def __init__(self, repo: Optional[UserStoreRepository] = None,
                 user_repo: Optional[UserRepository] = None,
                 store_repo: Optional[StoreRepository] = None,
                 audit: Optional[AuditService] = None):
        self.repo = repo or UserStoreRepository()
        self.user_repo = user_repo or UserRepository()
        self.store_repo = store_repo or StoreRepository()
        self.audit = audit or AuditService()

    def _check_store(self, store_id: int):
        if self.store_repo.find_by_id(store_id) is None:
            raise NotFoundError("Store")

    def _check_role(self, role_id: int):
        if self.user_repo.find_role_by_id(role_id) is None:
            raise NotFoundError("Role")

    def add(self, store_id: int, user_id: int, role_id: int,
            actor: Optional[TokenUser] = None) -> Membership:
        self._check_store(store_id)
        if self.user_repo.find_by_id(user_id) is None:
            raise NotFoundError("User")
        self._check_role(role_id)

        if self.repo.find_membership(user_id, store_id) is not None:
            raise ValidationError(
                "User is already assigned to this store",
                code="USER_ALREADY_ASSIGNED",
                details={"userId": user_id, "storeId": store_id}
            )

        self.repo.create(user_id, store_id, role_id)
        logger.info(f"Added user {user_id} to store {store_id} with role {role_id}")
        self.audit.log(AuditAction.CREATE, "user_store", f"{user_id}:{store_id}", store_id=store_id,
                       user=actor, changes={"userId": user_id, "roleId": role_id})
        return self.repo.find_membership(user_id, store_id)

    def update_role(self, store_id: int, user_id: int, role_id: Optional[int] = None,
                    is_active: Optional[bool] = None, actor: Optional[TokenUser] = None) -> Membership:
        current = self.repo.find_membership(user_id, store_id)
        if current is None:
            raise NotFoundError("Store membership")
        if role_id is not None:
            self._check_role(role_id)

        self.repo.update(user_id, store_id, role_id=role_id, is_active=is_active)

        changes = {}
        if role_id is not None and role_id != current.role_id:
            changes["roleId"] = {"from": current.role_id, "to": role_id}
        if is_active is not None and is_active != current.is_active:
            changes["isActive"] = {"from": current.is_active, "to": is_active}
        self.audit.log(AuditAction.UPDATE, "user_store", f"{user_id}:{store_id}", store_id=store_id,
                       user=actor, changes=changes)
        return self.repo.find_membership(user_id, store_id)

    def remove(self, store_id: int, user_id: int, actor: Optional[TokenUser] = None):
        if not self.repo.delete(user_id, store_id):
            raise NotFoundError("Store membership")
        logger.info(f"Removed user {user_id} from store {store_id}")
        self.audit.log(AuditAction.DELETE, "user_store", f"{user_id}:{store_id}", store_id=store_id, user=actor)

    def list_members(self, store_id: int) -> List[Membership]:
        self._check_store(store_id)
        return self.repo.find_by_store(store_id)

    def list_user_stores(self, user_id: int) -> List[Membership]:
        return self.repo.find_by_user(user_id)
