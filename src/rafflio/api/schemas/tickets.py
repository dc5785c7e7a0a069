"""Ticket pool and claim schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class TicketView(BaseModel):
    ticket_id: str
    number: int
    status: str  # available | selected | sold


class TicketPoolResponse(BaseModel):
    purchase_id: str
    raffle_id: str
    status: str | None = None
    ticket_count: int
    owned_numbers: list[int]
    remaining: int
    can_claim: bool
    tickets: list[TicketView]


class ClaimRequest(BaseModel):
    """Ticket numbers the buyer picked."""

    numbers: list[int] = Field(min_length=1, max_length=1000)


class ClaimResponse(BaseModel):
    purchase_id: str
    status: str
    ticket_numbers: list[int]
    confirmed: bool
