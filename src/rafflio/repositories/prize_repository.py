"""Prize repository — data access for the ``prizes`` table."""

from __future__ import annotations

from typing import Any

from rafflio.repositories.base import BaseRepository


class PrizeRepository(BaseRepository):
    """CRUD + domain queries for prizes."""

    def __init__(self, pool: Any) -> None:
        super().__init__(pool=pool, table_name="prizes", id_column="prize_id")

    def find_by_raffle(self, raffle_id: str) -> list[dict[str, Any]]:
        """Find all prizes for a raffle, ordered by position."""
        return self.find_by_field("raffle_id", raffle_id, order_by="position")

    def replace_for_raffle(self, raffle_id: str, prizes: list[dict[str, Any]]) -> list[str]:
        """Drop a raffle's prizes and insert *prizes* in order."""
        self.delete_by_field("raffle_id", raffle_id)
        rows = [
            {
                "raffle_id": raffle_id,
                "position": index,
                "name": prize["name"],
                "description": prize.get("description", ""),
            }
            for index, prize in enumerate(prizes, start=1)
        ]
        return self.create_many(rows)
