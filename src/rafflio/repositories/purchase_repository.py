"""Purchase repository — data access for the ``purchases`` table."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from rafflio.core.constants import CUSTOM_PRICE_TIER_ID, SETTLED_PURCHASE_STATUSES
from rafflio.repositories.base import BaseRepository

SORTABLE_COLUMNS = {"created_at", "amount", "full_name", "status", "ticket_count"}


class PurchaseRepository(BaseRepository):
    """CRUD + status transitions for purchases.

    Status writes are conditional on the current value, so re-applying the
    status a purchase already has touches no rows. Callers use the returned
    row count to decide whether a transition actually happened.
    """

    def __init__(self, pool: Any) -> None:
        super().__init__(pool=pool, table_name="purchases", id_column="purchase_id")

    # ── status ──────────────────────────────────────────────────────

    def set_status(self, purchase_id: str, status: str) -> int:
        """Set *status*; 0 rows when missing or already in that status."""
        sql = (
            "UPDATE purchases SET status = :status, updated_at = :now "
            "WHERE purchase_id = :id AND status <> :status"
        )
        return self._execute(
            sql,
            {"status": status, "now": datetime.now(UTC), "id": purchase_id},
        )

    def transition_status(
        self,
        purchase_id: str,
        from_statuses: Iterable[str],
        to_status: str,
    ) -> bool:
        """Compare-and-set: move to *to_status* only from one of *from_statuses*."""
        allowed = [s for s in from_statuses if s != to_status]
        if not allowed:
            return False
        in_clause, params = self._in_clause(allowed, "f")
        sql = (
            f"UPDATE purchases SET status = :to_status, updated_at = :now "
            f"WHERE purchase_id = :id AND status IN {in_clause}"
        )
        rows = self._execute(
            sql,
            {"to_status": to_status, "now": datetime.now(UTC), "id": purchase_id, **params},
        )
        return rows == 1

    def record_payment(
        self,
        purchase_id: str,
        status: str,
        payment_id: str | None = None,
    ) -> int:
        """Store the gateway payment id and status together.

        The payment id is kept when already set and *payment_id* is empty.
        A settled purchase (``paid`` or ``confirmed``) is never moved to a
        different status here; ``paid -> confirmed`` belongs to the claim flow.
        Returns rows affected; 0 when nothing changed.
        """
        locked = sorted(SETTLED_PURCHASE_STATUSES - {status})
        in_clause, locked_params = self._in_clause(locked, "k")
        sql = (
            "UPDATE purchases SET status = :status, "
            "payment_id = COALESCE(:payment_id, payment_id), updated_at = :now "
            f"WHERE purchase_id = :id AND status NOT IN {in_clause} AND (status <> :status "
            "OR (:payment_id IS NOT NULL AND (payment_id IS NULL OR payment_id <> :payment_id)))"
        )
        return self._execute(
            sql,
            {
                "status": status,
                "payment_id": payment_id or None,
                "now": datetime.now(UTC),
                "id": purchase_id,
                **locked_params,
            },
        )

    def set_preference(self, purchase_id: str, preference_id: str) -> int:
        return self.update(
            purchase_id,
            data={"preference_id": preference_id, "updated_at": datetime.now(UTC)},
        )

    # ── queries ─────────────────────────────────────────────────────

    def find_by_raffle(self, raffle_id: str) -> list[dict[str, Any]]:
        return self.find_by_field("raffle_id", raffle_id, order_by="created_at DESC")

    def find_used_price_tier_ids(self, raffle_id: str) -> set[str]:
        """Price tier ids referenced by at least one purchase of the raffle."""
        sql = (
            "SELECT DISTINCT price_tier_id FROM purchases "
            "WHERE raffle_id = :rid AND price_tier_id IS NOT NULL AND price_tier_id <> :custom"
        )
        params = {"rid": raffle_id, "custom": CUSTOM_PRICE_TIER_ID}
        return {row["price_tier_id"] for row in self._select(sql, params)}

    def search(
        self,
        limit: int = 20,
        offset: int = 0,
        status: str | None = None,
        raffle_id: str | None = None,
        text: str | None = None,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> tuple[list[dict[str, Any]], int]:
        """Filtered, paginated purchase listing. Returns (rows, total)."""
        clauses: list[str] = []
        params: dict[str, Any] = {}
        if status:
            clauses.append("status = :status")
            params["status"] = status
        if raffle_id:
            clauses.append("raffle_id = :rid")
            params["rid"] = raffle_id
        if text:
            clauses.append(
                "(LOWER(full_name) LIKE :q OR LOWER(email) LIKE :q "
                "OR LOWER(preference_id) LIKE :q)"
            )
            params["q"] = f"%{text.lower()}%"
        where = ("WHERE " + " AND ".join(clauses)) if clauses else ""

        column = sort_by if sort_by in SORTABLE_COLUMNS else "created_at"
        direction = "DESC" if descending else "ASC"

        count_rows = self._select(f"SELECT COUNT(*) AS cnt FROM purchases {where}", dict(params))
        total = int(count_rows[0]["cnt"]) if count_rows else 0

        sql = (
            f"SELECT * FROM purchases {where} ORDER BY {column} {direction} "
            f"OFFSET :off ROWS FETCH NEXT :lim ROWS ONLY"
        )
        rows = self._select(sql, {**params, "off": offset, "lim": limit})
        return rows, total
