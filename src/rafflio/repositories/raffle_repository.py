"""Raffle repository — data access for the ``raffles`` table."""

from __future__ import annotations

from typing import Any

from rafflio.repositories.base import BaseRepository


class RaffleRepository(BaseRepository):
    """CRUD + domain queries for raffles."""

    def __init__(self, pool: Any) -> None:
        super().__init__(pool=pool, table_name="raffles", id_column="raffle_id")

    def find_active(self, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
        """Active raffles, newest first."""
        return self.find_all(
            limit=limit,
            offset=offset,
            filters={"is_active": 1},
            order_by="created_at DESC",
        )

    def set_active(self, raffle_id: str, is_active: bool) -> int:
        return self.update(raffle_id, data={"is_active": 1 if is_active else 0})
