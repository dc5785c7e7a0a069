"""Back-office users (``users`` table)."""

from __future__ import annotations

from typing import Any

from rafflio.repositories.base import BaseRepository


class UserRepository(BaseRepository):
    def __init__(self, pool: Any) -> None:
        super().__init__(pool=pool, table_name="users", id_column="user_id")

    def find_by_email(self, email: str) -> dict[str, Any] | None:
        """Emails are stored lowercased; lookups are case-insensitive."""
        results = self.find_by_field("email", email.lower())
        return results[0] if results else None

    def count_active_admins(self) -> int:
        return self.count(filters={"role": "admin", "is_active": 1})
