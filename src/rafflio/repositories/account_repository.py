"""Account repository — data access for the ``accounts`` table."""

from __future__ import annotations

from typing import Any

from rafflio.repositories.base import BaseRepository


class AccountRepository(BaseRepository):
    """CRUD for bank-transfer payee accounts."""

    def __init__(self, pool: Any) -> None:
        super().__init__(pool=pool, table_name="accounts", id_column="account_id")

    def find_by_alias(self, alias: str) -> dict[str, Any] | None:
        results = self.find_by_field("alias", alias)
        return results[0] if results else None
