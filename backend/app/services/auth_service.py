"""
Authentication service: email + password login issuing a JWT
"""
import logging
from typing import Optional

from app.core.auth import TokenUser, create_access_token, verify_password
from app.core.config import settings
from app.core.errors import UnauthorizedError
from app.domain.user import User
from app.repositories.user_repository import UserRepository
from app.repositories.user_store_repository import UserStoreRepository
from app.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


class AuthService:

    def __init__(self, repo: Optional[UserRepository] = None,
                 membership_repo: Optional[UserStoreRepository] = None,
                 audit: Optional[AuditService] = None):
        self.repo = repo or UserRepository()
        self.membership_repo = membership_repo or UserStoreRepository()
        self.audit = audit or AuditService()

    def authenticate(self, email: str, password: str, ip_address: Optional[str] = None) -> dict:
        user = self.repo.find_by_email(email)

        # Same message for unknown email and wrong password
        if user is None or not user.password_hash or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login for {email}")
            raise UnauthorizedError("Invalid email or password", code="INVALID_CREDENTIALS")

        if not user.is_active:
            raise UnauthorizedError("Account is disabled", code="ACCOUNT_DISABLED")

        token = create_access_token(user.id, user.email, user.role, name=user.name)
        self.repo.touch_last_login(user.id)

        self.audit.log(AuditAction.LOGIN, "user", user.id,
                       user=TokenUser(id=user.id, email=user.email, name=user.name, role=user.role),
                       ip_address=ip_address)
        logger.info(f"User {user.id} logged in")

        return {
            "accessToken": token,
            "tokenType": "bearer",
            "expiresIn": settings.JWT_EXPIRE_MINUTES * 60,
            "user": self.profile(user),
        }

    def profile(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "role": user.role,
            "stores": [
                {
                    "storeId": membership.store_id,
                    "storeName": membership.store_name,
                    "role": membership.role_name,
                    "permissions": membership.permissions,
                }
                for membership in self.membership_repo.find_by_user(user.id)
                if membership.is_active
            ],
        }

    def me(self, user_id: int) -> dict:
        user = self.repo.find_by_id(user_id)
        if user is None or not user.is_active:
            raise UnauthorizedError("User no longer exists")
        return self.profile(user)
