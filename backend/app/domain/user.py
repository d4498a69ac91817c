"""
User domain model
"""
from pydantic import BaseModel, Field, EmailStr
from typing import Optional
from datetime import datetime

from app.domain.base import DomainModel


class User(DomainModel):
    id: int
    email: str
    name: Optional[str] = None
    role: str = "CUSTOMER"
    is_active: bool = True
    password_hash: Optional[str] = Field(None, exclude=True)
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class Role(DomainModel):
    id: int
    name: str
    description: Optional[str] = None
    permissions: list = []
