"""Price tier repository — data access for the ``price_tiers`` table."""

from __future__ import annotations

from typing import Any

from rafflio.repositories.base import BaseRepository


class PriceTierRepository(BaseRepository):
    """CRUD + domain queries for price tiers."""

    def __init__(self, pool: Any) -> None:
        super().__init__(pool=pool, table_name="price_tiers", id_column="price_tier_id")

    def find_by_raffle(self, raffle_id: str) -> list[dict[str, Any]]:
        """Tiers of a raffle, smallest bundle first."""
        return self.find_by_field("raffle_id", raffle_id, order_by="ticket_count")

    def replace_for_raffle(self, raffle_id: str, tiers: list[dict[str, Any]]) -> list[str]:
        self.delete_by_field("raffle_id", raffle_id)
        rows = [
            {
                "raffle_id": raffle_id,
                "amount": tier["amount"],
                "ticket_count": tier["ticket_count"],
            }
            for tier in tiers
        ]
        return self.create_many(rows)
