"""Ticket repository — data access for the ``tickets`` table.

``assign_tickets`` is the only mutation path for ticket ownership. Both
directions run as a single conditional ``UPDATE`` keyed on the current
status, so a ticket claimed by another buyer between page load and submit
makes the whole batch fail instead of being partially granted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

from rafflio.core.constants import TICKET_AVAILABLE, TICKET_SOLD
from rafflio.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class TicketRepository(BaseRepository):
    """CRUD + pool queries + atomic assignment for tickets."""

    def __init__(self, pool: Any) -> None:
        super().__init__(pool=pool, table_name="tickets", id_column="ticket_id")

    # ── pool queries ────────────────────────────────────────────────

    def find_by_raffle(self, raffle_id: str) -> list[dict[str, Any]]:
        """Every ticket of a raffle ordered by number."""
        return self.find_by_field("raffle_id", raffle_id, order_by="ticket_number")

    def find_available(self, raffle_id: str) -> list[dict[str, Any]]:
        sql = (
            "SELECT * FROM tickets WHERE raffle_id = :rid AND status = :st "
            "ORDER BY ticket_number"
        )
        return self._select(sql, {"rid": raffle_id, "st": TICKET_AVAILABLE})

    def find_by_purchase(self, purchase_id: str) -> list[dict[str, Any]]:
        return self.find_by_field("purchase_id", purchase_id, order_by="ticket_number")

    def find_by_numbers(
        self,
        raffle_id: str,
        numbers: Sequence[int],
    ) -> list[dict[str, Any]]:
        """Tickets of a raffle whose numbers are in *numbers*."""
        if not numbers:
            return []
        in_clause, params = self._in_clause(list(numbers), "n")
        sql = (
            f"SELECT * FROM tickets WHERE raffle_id = :rid "
            f"AND ticket_number IN {in_clause} ORDER BY ticket_number"
        )
        return self._select(sql, {"rid": raffle_id, **params})

    def count_by_purchase(self, purchase_id: str) -> int:
        return self.count(filters={"purchase_id": purchase_id})

    def count_sold(self, raffle_id: str) -> int:
        return self.count(filters={"raffle_id": raffle_id, "status": TICKET_SOLD})

    def create_pool_for_raffle(self, raffle_id: str, max_tickets: int, start: int = 1) -> int:
        """Insert tickets start..max_tickets, all available. Returns count created."""
        rows = [
            {
                "raffle_id": raffle_id,
                "ticket_number": number,
                "status": TICKET_AVAILABLE,
                "purchase_id": None,
            }
            for number in range(start, max_tickets + 1)
        ]
        return len(self.create_many(rows))

    # ── assignment ──────────────────────────────────────────────────

    def assign_tickets(
        self,
        purchase_id: str | None,
        ticket_ids: Sequence[str],
        owner_id: str | None = None,
    ) -> bool:
        """Assign *ticket_ids* to *purchase_id*, or release them when ``None``.

        Claiming requires every ticket to be ``available`` and the purchase
        to have room for all of them; releasing requires every ticket to be
        ``sold`` to *owner_id*. Either all tickets change or none do.
        """
        ids = list(dict.fromkeys(ticket_ids))
        if not ids:
            return True
        if purchase_id is None:
            if owner_id is None:
                raise ValueError("Releasing tickets requires the owning purchase id")
            return self._release(owner_id, ids)
        return self._claim(purchase_id, ids)

    def _claim(self, purchase_id: str, ids: list[str]) -> bool:
        in_clause, params = self._in_clause(ids, "t")
        update_sql = (
            f"UPDATE tickets SET status = :sold, purchase_id = :pid, "
            f"updated_at = SYSTIMESTAMP "
            f"WHERE ticket_id IN {in_clause} AND raffle_id = :rid "
            f"AND status = :available AND purchase_id IS NULL"
        )

        conn = self._acquire()
        try:
            with conn.cursor() as cur:
                start = time.perf_counter()
                # Serializes concurrent claims for the same purchase
                cur.execute(
                    "SELECT ticket_count, raffle_id FROM purchases "
                    "WHERE purchase_id = :pid FOR UPDATE",
                    {"pid": purchase_id},
                )
                row = cur.fetchone()
                if row is None:
                    conn.rollback()
                    logger.warning("Claim for unknown purchase %s", purchase_id)
                    return False
                capacity, raffle_id = int(row[0]), row[1]

                cur.execute(
                    "SELECT COUNT(*) FROM tickets WHERE purchase_id = :pid",
                    {"pid": purchase_id},
                )
                owned_row = cur.fetchone()
                owned = int(owned_row[0]) if owned_row else 0
                if owned + len(ids) > capacity:
                    conn.rollback()
                    logger.warning(
                        "Claim of %d tickets exceeds purchase %s capacity (%d owned of %d)",
                        len(ids),
                        purchase_id,
                        owned,
                        capacity,
                    )
                    return False

                cur.execute(
                    update_sql,
                    {
                        "sold": TICKET_SOLD,
                        "available": TICKET_AVAILABLE,
                        "pid": purchase_id,
                        "rid": raffle_id,
                        **params,
                    },
                )
                if int(cur.rowcount) != len(ids):
                    conn.rollback()
                    logger.info(
                        "Claim conflict for purchase %s: %d of %d tickets still available",
                        purchase_id,
                        cur.rowcount,
                        len(ids),
                    )
                    return False

                conn.commit()
                self._log_query(update_sql, (time.perf_counter() - start) * 1000)
                return True
        finally:
            conn.close()

    def _release(self, owner_id: str, ids: list[str]) -> bool:
        in_clause, params = self._in_clause(ids, "t")
        sql = (
            f"UPDATE tickets SET status = :available, purchase_id = NULL, "
            f"updated_at = SYSTIMESTAMP "
            f"WHERE ticket_id IN {in_clause} AND status = :sold AND purchase_id = :owner"
        )

        conn = self._acquire()
        try:
            with conn.cursor() as cur:
                start = time.perf_counter()
                cur.execute(
                    sql,
                    {
                        "available": TICKET_AVAILABLE,
                        "sold": TICKET_SOLD,
                        "owner": owner_id,
                        **params,
                    },
                )
                if int(cur.rowcount) != len(ids):
                    conn.rollback()
                    logger.warning(
                        "Release for purchase %s rejected: %d of %d tickets owned",
                        owner_id,
                        cur.rowcount,
                        len(ids),
                    )
                    return False
                conn.commit()
                self._log_query(sql, (time.perf_counter() - start) * 1000)
                return True
        finally:
            conn.close()
