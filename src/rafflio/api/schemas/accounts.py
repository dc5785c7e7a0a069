"""Bank-transfer account schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class AccountCreate(BaseModel):
    cbu: str = Field(pattern=r"^\d{22}$")
    alias: str = Field(min_length=6, max_length=20)
    titular: str = Field(min_length=1, max_length=255)
    banco: str = Field(min_length=1, max_length=255)
    email: EmailStr | None = None
    whatsapp: str = Field(default="", max_length=50)


class AccountResponse(BaseModel):
    account_id: str
    cbu: str
    alias: str
    titular: str
    banco: str
    email: str | None = None
    whatsapp: str | None = None
    created_at: datetime | None = None
