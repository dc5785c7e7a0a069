"""Raffle service — raffle administration and public raffle queries.

A raffle owns its prizes, price tiers and a fixed pool of numbered tickets
created up front (1..max_tickets). The sold count is always derived from
the ticket pool, never stored.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from urllib.parse import quote

from rafflio.core.constants import MAX_TICKETS_PER_RAFFLE
from rafflio.services.pricing import validate_tiers

logger = logging.getLogger(__name__)

# Prizes spelled out in the share text
SHARED_PRIZES = 3


def _format_amount(amount: Decimal) -> str:
    return str(int(amount)) if amount == amount.to_integral_value() else f"{amount:.2f}"


class RaffleError(Exception):
    """Raffle service error with HTTP status hint."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class RaffleService:
    """Creates, updates and describes raffles."""

    def __init__(
        self,
        raffle_repo: Any,
        prize_repo: Any,
        price_tier_repo: Any,
        ticket_repo: Any,
        purchase_repo: Any,
        account_repo: Any | None = None,
    ) -> None:
        self.raffle_repo = raffle_repo
        self.prize_repo = prize_repo
        self.price_tier_repo = price_tier_repo
        self.ticket_repo = ticket_repo
        self.purchase_repo = purchase_repo
        self.account_repo = account_repo

    # ── Create ──────────────────────────────────────────────────────

    def create_raffle(
        self,
        *,
        title: str,
        max_tickets: int,
        description: str = "",
        draw_date: datetime | None = None,
        account_id: str | None = None,
        prizes: list[dict[str, Any]] | None = None,
        price_tiers: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Create a raffle with its prizes, price tiers and full ticket pool."""
        if not 1 <= max_tickets <= MAX_TICKETS_PER_RAFFLE:
            raise RaffleError(f"max_tickets must be between 1 and {MAX_TICKETS_PER_RAFFLE}")
        tiers = price_tiers or []
        self._validate_tiers(tiers)
        self._check_account(account_id)

        raffle_id = uuid.uuid4().hex
        now = datetime.now(tz=UTC)
        data = {
            "title": title,
            "description": description,
            "draw_date": draw_date,
            "max_tickets": max_tickets,
            "account_id": account_id,
            "is_active": 1,
            "created_at": now,
            "updated_at": now,
        }
        self.raffle_repo.create(data=data, new_id=raffle_id)

        if prizes:
            self.prize_repo.replace_for_raffle(raffle_id, prizes)
        if tiers:
            self.price_tier_repo.replace_for_raffle(raffle_id, tiers)
        created = self.ticket_repo.create_pool_for_raffle(raffle_id, max_tickets)

        logger.info("Raffle created: raffle_id=%s tickets=%d", raffle_id, created)
        return self.get_raffle(raffle_id)

    # ── Queries ─────────────────────────────────────────────────────

    def get_raffle(self, raffle_id: str) -> dict[str, Any]:
        """Raffle with prizes, price tiers, account and derived sold count."""
        raffle = self.raffle_repo.find_by_id(raffle_id)
        if raffle is None:
            raise RaffleError("Raffle not found", status_code=404)
        return self._enrich(raffle)

    def list_raffles(
        self,
        *,
        active_only: bool = True,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        filters: dict[str, Any] = {"is_active": 1} if active_only else {}
        total = self.raffle_repo.count(filters=filters)
        offset = (page - 1) * limit
        items = self.raffle_repo.find_all(
            limit=limit,
            offset=offset,
            filters=filters,
            order_by="created_at DESC",
        )
        total_pages = max(1, (total + limit - 1) // limit)
        return {
            "items": [self._enrich(r, with_account=False) for r in items],
            "pagination": {
                "page": page,
                "limit": limit,
                "total_items": total,
                "total_pages": total_pages,
            },
        }

    def get_available_tickets(self, raffle_id: str) -> list[dict[str, Any]]:
        if self.raffle_repo.find_by_id(raffle_id) is None:
            raise RaffleError("Raffle not found", status_code=404)
        return self.ticket_repo.find_available(raffle_id)

    def used_price_tier_ids(self, raffle_id: str) -> list[str]:
        """Tiers referenced by purchases; these cannot be edited or removed."""
        return sorted(self.purchase_repo.find_used_price_tier_ids(raffle_id))

    def share_message(self, raffle_id: str, base_url: str) -> dict[str, str]:
        """WhatsApp-ready text announcing the raffle, plus its share link.

        Lists the first three prizes (with a note when there are more),
        every price tier and the public raffle URL.
        """
        raffle = self.get_raffle(raffle_id)
        url = f"{base_url.rstrip('/')}/raffle/view/{raffle_id}"

        lines = [f"🎉 *{raffle['title']}*"]
        if raffle.get("description"):
            lines.append(raffle["description"])
        lines.append("")
        draw_date = raffle.get("draw_date")
        if draw_date:
            lines += [f"📅 *Sorteo:* {draw_date.day}/{draw_date.month}/{draw_date.year}", ""]

        prizes = raffle["prizes"]
        if prizes:
            lines.append("🏆 *PREMIOS:*")
            for index, prize in enumerate(prizes[:SHARED_PRIZES]):
                position = "1er Premio" if index == 0 else f"{index + 1}° Premio"
                lines.append(f"• {position}: {prize['name']}")
            if len(prizes) > SHARED_PRIZES:
                lines.append(f"… y {len(prizes) - SHARED_PRIZES} premios MAS, no podes perder")
            lines.append("")

        if raffle["price_tiers"]:
            lines.append("💰 *PRECIOS:*")
            for tier in raffle["price_tiers"]:
                lines.append(f"• {tier['ticket_count']} números x ${_format_amount(tier['amount'])}")
            lines.append("")

        lines += [f"🔗 {url}", "👋🎉😊"]
        message = "\n".join(lines)
        return {
            "message": message,
            "url": url,
            "whatsapp_url": f"https://wa.me/?text={quote(message)}",
        }

    # ── Update / delete ─────────────────────────────────────────────

    def update_raffle(self, raffle_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        """Apply a partial update.

        ``prizes`` replaces the prize list. ``price_tiers`` replaces the tier
        list only while no existing tier is referenced by a purchase.
        ``max_tickets`` may only grow; new numbers are added as available.
        """
        raffle = self.raffle_repo.find_by_id(raffle_id)
        if raffle is None:
            raise RaffleError("Raffle not found", status_code=404)

        prizes = updates.pop("prizes", None)
        tiers = updates.pop("price_tiers", None)
        new_max = updates.pop("max_tickets", None)

        if tiers is not None:
            self._validate_tiers(tiers)
            used = self.purchase_repo.find_used_price_tier_ids(raffle_id)
            if used:
                raise RaffleError(
                    "Price tiers already used by purchases cannot be changed",
                    status_code=409,
                )
        if "account_id" in updates:
            self._check_account(updates["account_id"])

        current_max = int(raffle.get("max_tickets") or 0)
        if new_max is not None and new_max != current_max:
            if new_max < current_max:
                raise RaffleError("max_tickets can only be increased", status_code=409)
            if new_max > MAX_TICKETS_PER_RAFFLE:
                raise RaffleError(f"max_tickets cannot exceed {MAX_TICKETS_PER_RAFFLE}")
            self.ticket_repo.create_pool_for_raffle(raffle_id, new_max, start=current_max + 1)
            updates["max_tickets"] = new_max

        if "is_active" in updates:
            updates["is_active"] = 1 if updates["is_active"] else 0

        fields = {k: v for k, v in updates.items() if v is not None or k == "account_id"}
        if fields:
            fields["updated_at"] = datetime.now(tz=UTC)
            self.raffle_repo.update(raffle_id, data=fields)
        if prizes is not None:
            self.prize_repo.replace_for_raffle(raffle_id, prizes)
        if tiers is not None:
            self.price_tier_repo.replace_for_raffle(raffle_id, tiers)

        logger.info("Raffle updated: raffle_id=%s fields=%s", raffle_id, sorted(fields))
        return self.get_raffle(raffle_id)

    def delete_raffle(self, raffle_id: str) -> None:
        """Delete a raffle with its tickets, purchases, prizes and tiers."""
        if self.raffle_repo.find_by_id(raffle_id) is None:
            raise RaffleError("Raffle not found", status_code=404)
        self.ticket_repo.delete_by_field("raffle_id", raffle_id)
        self.purchase_repo.delete_by_field("raffle_id", raffle_id)
        self.prize_repo.delete_by_field("raffle_id", raffle_id)
        self.price_tier_repo.delete_by_field("raffle_id", raffle_id)
        self.raffle_repo.delete(raffle_id)
        logger.info("Raffle deleted: raffle_id=%s", raffle_id)

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _validate_tiers(tiers: list[dict[str, Any]]) -> None:
        try:
            validate_tiers(tiers)
        except ValueError as e:
            raise RaffleError(str(e), status_code=422) from e
        sizes = [int(t["ticket_count"]) for t in tiers]
        if len(set(sizes)) != len(sizes):
            raise RaffleError("Price tiers must have distinct ticket counts", status_code=422)

    def _check_account(self, account_id: str | None) -> None:
        if account_id and self.account_repo is not None:
            if self.account_repo.find_by_id(account_id) is None:
                raise RaffleError("Account not found", status_code=404)

    def _enrich(self, raffle: dict[str, Any], with_account: bool = True) -> dict[str, Any]:
        raffle_id = raffle["raffle_id"]
        raffle["is_active"] = bool(raffle.get("is_active"))
        raffle["prizes"] = self.prize_repo.find_by_raffle(raffle_id)
        raffle["price_tiers"] = [
            {**t, "amount": Decimal(str(t["amount"]))}
            for t in self.price_tier_repo.find_by_raffle(raffle_id)
        ]
        raffle["sold_tickets"] = self.ticket_repo.count_sold(raffle_id)
        raffle["total_tickets"] = int(raffle.get("max_tickets") or 0)
        raffle["available_tickets"] = raffle["total_tickets"] - raffle["sold_tickets"]
        if with_account and self.account_repo is not None and raffle.get("account_id"):
            raffle["account"] = self.account_repo.find_by_id(raffle["account_id"])
        return raffle

