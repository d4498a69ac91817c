"""
Authentication and authorization for the API

- JWT bearer tokens (HS256, signed with AUTH_SECRET)
- Platform role hierarchy (SUPER_ADMIN > STORE_ADMIN > STAFF > CUSTOMER)
- Store-scoped permissions resolved from the user's UserStore role,
  with wildcard matching ("products.*", "*.view", "*")
"""
from typing import Iterable, List, Optional, Union
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from passlib.context import CryptContext
from pydantic import BaseModel

from app.core.config import settings
from app.core.errors import ErrorCode, ForbiddenError
from app.repositories.user_store_repository import UserStoreRepository


# Security scheme for bearer tokens
security = HTTPBearer(auto_error=False)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class Role:
    SUPER_ADMIN = "SUPER_ADMIN"
    STORE_ADMIN = "STORE_ADMIN"
    STAFF = "STAFF"
    CUSTOMER = "CUSTOMER"


ROLE_HIERARCHY = {
    Role.SUPER_ADMIN: 4,
    Role.STORE_ADMIN: 3,
    Role.STAFF: 2,
    Role.CUSTOMER: 1,
}


class Permission:
    PRODUCTS_VIEW = "products.view"
    PRODUCTS_CREATE = "products.create"
    PRODUCTS_UPDATE = "products.update"
    PRODUCTS_DELETE = "products.delete"
    ORDERS_VIEW = "orders.view"
    ORDERS_UPDATE = "orders.update"
    ORDERS_EXPORT = "orders.export"
    CUSTOMERS_VIEW = "customers.view"
    CATEGORIES_MANAGE = "categories.manage"
    BRANDS_MANAGE = "brands.manage"
    ATTRIBUTES_MANAGE = "attributes.manage"
    SETTINGS_VIEW = "settings.view"
    SETTINGS_UPDATE = "settings.update"
    REPORTS_VIEW = "reports.view"
    STAFF_VIEW = "staff.view"
    STAFF_MANAGE = "staff.manage"
    AUDIT_VIEW = "audit.view"
    ALL = "*"


class TokenUser(BaseModel):
    """User data extracted from JWT token"""
    id: int
    email: str
    name: Optional[str] = None
    role: str = Role.CUSTOMER

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN


class StoreContext(BaseModel):
    """Authenticated user plus the store the request acts on"""
    user: TokenUser
    store_id: Optional[int] = None
    permissions: List[str] = []

    @property
    def is_super_admin(self) -> bool:
        return self.user.is_super_admin

    def require_store(self) -> int:
        if self.store_id is None:
            raise ForbiddenError("No store context for this user", code=ErrorCode.FORBIDDEN)
        return self.store_id

    def can(self, permission: Union[str, Iterable[str]]) -> bool:
        return self.is_super_admin or has_permission(self.permissions, permission)


# ============================================================================
# Passwords and tokens
# ============================================================================

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def get_auth_secret() -> str:
    """Get the AUTH_SECRET from settings"""
    if not settings.AUTH_SECRET:
        raise ValueError("AUTH_SECRET environment variable is not set")
    return settings.AUTH_SECRET


def create_access_token(user_id: int, email: str, role: str, name: Optional[str] = None,
                        expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.JWT_EXPIRE_MINUTES)
    payload = {
        "sub": str(user_id),
        "email": email,
        "name": name,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, get_auth_secret(), algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a bearer JWT.

    Payload:
    {
        "sub": "42",
        "email": "owner@acmestore.com",
        "name": "Store Owner",
        "role": "STORE_ADMIN",
        "iat": 1234567890,
        "exp": 1234567890
    }
    """
    try:
        return jwt.decode(
            token,
            get_auth_secret(),
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_aud": False}
        )
    except JWTError as e:
        error_msg = str(e).lower()
        if "expired" in error_msg:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"}
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"}
        )


def _user_from_payload(payload: dict) -> Optional[TokenUser]:
    user_id = payload.get("sub") or payload.get("id")
    email = payload.get("email")
    if not user_id or not email:
        return None
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return TokenUser(
        id=user_id,
        email=email,
        name=payload.get("name"),
        role=payload.get("role", Role.CUSTOMER)
    )


# ============================================================================
# Dependencies
# ============================================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> TokenUser:
    """
    Dependency that extracts and validates the current user from JWT.

    Usage:
        @router.get("/protected")
        async def protected_route(user: TokenUser = Depends(get_current_user)):
            return {"message": f"Hello {user.email}"}
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    payload = decode_token(credentials.credentials)
    user = _user_from_payload(payload)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload: missing user id or email",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return user


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[TokenUser]:
    """Optional authentication - returns None if no valid token provided."""
    if not credentials:
        return None

    try:
        payload = decode_token(credentials.credentials)
    except HTTPException:
        return None

    return _user_from_payload(payload)


def require_role(*allowed_roles: str):
    """
    Dependency factory for platform role checks.

    With a single role the hierarchy applies (STORE_ADMIN also admits
    SUPER_ADMIN). With several roles the user's role must be one of them.

    Usage:
        @router.delete("/stores/{store_id}")
        async def delete_store(user: TokenUser = Depends(require_role(Role.SUPER_ADMIN))):
            ...
    """
    async def role_checker(
        user: TokenUser = Depends(get_current_user)
    ) -> TokenUser:
        if len(allowed_roles) == 1:
            user_level = ROLE_HIERARCHY.get(user.role, 0)
            required_level = ROLE_HIERARCHY.get(allowed_roles[0], 0)
            allowed = user_level >= required_level
        else:
            allowed = user.role in allowed_roles

        if not allowed:
            raise ForbiddenError(
                f"Access denied. Required role: {', '.join(allowed_roles)}, your role: {user.role}",
                code=ErrorCode.INSUFFICIENT_PERMISSIONS
            )

        return user

    return role_checker


# ============================================================================
# Permissions
# ============================================================================

def permission_matches(granted: str, required: str) -> bool:
    """
    Wildcard-aware permission match.

    "*" matches everything, "products.*" matches "products.view",
    "*.view" matches "orders.view".
    """
    if granted == required or granted == "*":
        return True

    if granted.endswith(".*"):
        category = granted[:-2]
        return required.startswith(category + ".")

    if granted.startswith("*."):
        action = granted[2:]
        return required.endswith("." + action)

    return False


def has_permission(user_permissions: List[str], required: Union[str, Iterable[str]]) -> bool:
    """True if any granted permission satisfies any of the required ones"""
    required_permissions = [required] if isinstance(required, str) else list(required)

    if "*" in user_permissions:
        return True

    return any(
        permission_matches(granted, needed)
        for needed in required_permissions
        for granted in user_permissions
    )


def _requested_store_id(request: Request) -> Optional[int]:
    raw = request.headers.get("X-Store-Id") or request.query_params.get("storeId")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ForbiddenError("Invalid store id", code=ErrorCode.TENANT_ISOLATION_VIOLATION)


async def get_store_context(
    request: Request,
    user: TokenUser = Depends(get_current_user)
) -> StoreContext:
    """
    Resolve the store the request acts on.

    The store comes from the X-Store-Id header or the storeId query param.
    Super admins may act on any store (or none, for cross-store listings).
    Everyone else must hold an active membership in the requested store;
    without an explicit store their first active membership is used.
    """
    return resolve_store_context(user, _requested_store_id(request))


def resolve_store_context(user: TokenUser, store_id: Optional[int]) -> StoreContext:
    if user.is_super_admin:
        return StoreContext(user=user, store_id=store_id, permissions=["*"])

    repo = UserStoreRepository()
    if store_id is not None:
        membership = repo.find_membership(user.id, store_id)
        if membership is None or not membership.is_active:
            raise ForbiddenError(
                "You do not have access to this store",
                code=ErrorCode.TENANT_ISOLATION_VIOLATION
            )
    else:
        memberships = [m for m in repo.find_by_user(user.id) if m.is_active]
        membership = memberships[0] if memberships else None

    if membership is None:
        return StoreContext(user=user, store_id=None, permissions=[])

    return StoreContext(
        user=user,
        store_id=membership.store_id,
        permissions=membership.permissions
    )


def require_permission(*permissions: str):
    """
    Dependency factory for store-scoped permission checks.

    Usage:
        @router.post("/products")
        async def create_product(ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_CREATE))):
            ...
    """
    async def permission_checker(
        ctx: StoreContext = Depends(get_store_context)
    ) -> StoreContext:
        if not ctx.can(permissions):
            raise ForbiddenError(
                f"Missing permission: {', '.join(permissions)}",
                code=ErrorCode.INSUFFICIENT_PERMISSIONS
            )
        return ctx

    return permission_checker


# Convenience dependencies for common role requirements
require_super_admin = require_role(Role.SUPER_ADMIN)
require_store_admin = require_role(Role.STORE_ADMIN)
require_staff = require_role(Role.STAFF)
