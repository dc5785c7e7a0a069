"""Pricing engine — price an arbitrary ticket quantity from a raffle's bundles.

A raffle sells tickets in price tiers ("bundles"): ``ticket_count`` tickets
for ``amount``. Quantities that match no bundle are priced greedily: as many
of the largest bundle as fit, then the next largest, and any remainder at
the per-ticket rate of the smallest bundle. The greedy result is not always
the cheapest split and must not be "optimized".
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from rafflio.core.constants import CUSTOM_PRICE_TIER_ID

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class PriceQuote:
    """Greedy price for a quantity and the first bundle that contributed."""

    amount: Decimal
    tier: dict[str, Any] | None


@dataclass(frozen=True)
class ResolvedTier:
    """Tier a purchase is recorded against."""

    price_tier_id: str
    amount: Decimal
    ticket_count: int

    @property
    def is_custom(self) -> bool:
        return self.price_tier_id == CUSTOM_PRICE_TIER_ID


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def validate_tiers(tiers: Sequence[dict[str, Any]]) -> None:
    """Raise ValueError unless every tier has ticket_count > 0 and amount >= 0."""
    for tier in tiers:
        count = int(tier.get("ticket_count") or 0)
        if count <= 0:
            raise ValueError(f"Price tier ticket_count must be positive, got {count}")
        if _to_decimal(tier.get("amount", 0)) < 0:
            raise ValueError("Price tier amount must not be negative")


def quote_price(tiers: Sequence[dict[str, Any]], quantity: int) -> PriceQuote:
    """Greedy largest-bundle-first price for *quantity* tickets.

    Returns a zero quote with no tier when there are no tiers or nothing
    to buy. The tier returned is the first (largest) bundle used, or the
    smallest bundle when only the per-ticket remainder applies.
    """
    if quantity < 0:
        raise ValueError("Quantity must not be negative")
    if not tiers or quantity == 0:
        return PriceQuote(amount=Decimal("0.00"), tier=None)
    validate_tiers(tiers)

    amount = Decimal(0)
    first_used: dict[str, Any] | None = None
    remaining = quantity

    for tier in sorted(tiers, key=lambda t: int(t["ticket_count"]), reverse=True):
        size = int(tier["ticket_count"])
        packs = remaining // size
        if packs > 0:
            amount += packs * _to_decimal(tier["amount"])
            remaining -= packs * size
            if first_used is None:
                first_used = tier

    if remaining > 0:
        smallest = min(tiers, key=lambda t: int(t["ticket_count"]))
        unit = _to_decimal(smallest["amount"]) / int(smallest["ticket_count"])
        amount += unit * remaining
        if first_used is None:
            first_used = smallest

    return PriceQuote(amount=amount.quantize(CENTS, rounding=ROUND_HALF_UP), tier=first_used)


def resolve_price_tier(tiers: Sequence[dict[str, Any]], quantity: int) -> ResolvedTier:
    """Tier whose bundle size equals *quantity*, else the ``custom`` sentinel.

    The amount is always the greedy quote so cart totals and recorded
    purchase amounts agree.
    """
    quote = quote_price(tiers, quantity)
    exact = next((t for t in tiers if int(t["ticket_count"]) == quantity), None)
    tier_id = str(exact["price_tier_id"]) if exact is not None else CUSTOM_PRICE_TIER_ID
    return ResolvedTier(price_tier_id=tier_id, amount=quote.amount, ticket_count=quantity)
