"""Raffle entity schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class PrizeIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=2000)


class PriceTierIn(BaseModel):
    """A bundle: ``ticket_count`` tickets for ``amount``."""

    amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    ticket_count: int = Field(gt=0)


class RaffleCreate(BaseModel):
    """Schema for creating a raffle."""

    title: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=4000)
    draw_date: datetime | None = None
    max_tickets: int = Field(ge=1, le=100_000)
    account_id: str | None = None
    prizes: list[PrizeIn] = Field(default_factory=list)
    price_tiers: list[PriceTierIn] = Field(default_factory=list)


class RaffleUpdate(BaseModel):
    """Schema for updating a raffle. Omitted fields are left untouched."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=4000)
    draw_date: datetime | None = None
    max_tickets: int | None = Field(default=None, ge=1, le=100_000)
    account_id: str | None = None
    is_active: bool | None = None
    prizes: list[PrizeIn] | None = None
    price_tiers: list[PriceTierIn] | None = None


class PrizeResponse(BaseModel):
    prize_id: str
    raffle_id: str
    position: int | None = None
    name: str
    description: str | None = None


class PriceTierResponse(BaseModel):
    price_tier_id: str
    raffle_id: str
    amount: Decimal
    ticket_count: int


class RaffleResponse(BaseModel):
    """Schema for raffle in API responses."""

    raffle_id: str
    title: str
    description: str | None = None
    draw_date: datetime | None = None
    max_tickets: int
    total_tickets: int
    sold_tickets: int
    available_tickets: int
    is_active: bool
    account_id: str | None = None
    prizes: list[PrizeResponse] = Field(default_factory=list)
    price_tiers: list[PriceTierResponse] = Field(default_factory=list)
    created_at: datetime | None = None
