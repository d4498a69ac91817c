"""
Authentication API endpoints
- Email/password login returning a bearer JWT
- Current user profile with store memberships
"""
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_auth_service
from app.core.auth import TokenUser, get_current_user
from app.core.rate_limit import client_ip
from app.core.responses import success
from app.domain.user import LoginRequest
from app.services.auth_service import AuthService

router = APIRouter()


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service)
):
    """
    Exchange email + password for an access token.

    Returns:
        {"data": {"accessToken": "...", "tokenType": "bearer", "expiresIn": 43200, "user": {...}}}
    """
    return success(service.authenticate(body.email, body.password, ip_address=client_ip(request)))


@router.get("/me")
async def me(
    user: TokenUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    return success(service.me(user.id))
