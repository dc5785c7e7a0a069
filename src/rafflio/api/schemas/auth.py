"""Authentication request/response schemas."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    """Email/password login request."""

    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    user_id: str
    access_token: str
    token_type: str = "bearer"
    role: str
    name: str | None = None


class UserCreate(BaseModel):
    """Back-office user creation request."""

    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(min_length=1, max_length=255)
    role: str = Field(default="admin", pattern=r"^(admin|operator)$")


class UserStatusUpdate(BaseModel):
    is_active: bool


class UserResponse(BaseModel):
    user_id: str
    email: str
    name: str | None = None
    role: str | None = None
    is_active: bool = True
