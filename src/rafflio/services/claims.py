"""Ticket claiming — let a paid buyer pick their ticket numbers.

``TicketSelection`` models the buyer's pending choice against the raffle's
pool; ``ClaimService`` validates that choice and hands it to the atomic
``TicketRepository.assign_tickets``. A lost race (a number sold to someone
else between page load and submit) fails the whole claim, leaves the
purchase untouched and returns a refreshed pool.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from rafflio.core.constants import (
    PURCHASE_CONFIRMED,
    PURCHASE_PAID,
    TICKET_AVAILABLE,
    TICKET_SELECTED,
    TICKET_SOLD,
)

logger = logging.getLogger(__name__)


class ClaimError(Exception):
    """Claim service error with HTTP status hint."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class ClaimConflictError(ClaimError):
    """Some requested numbers were taken; carries the refreshed pool."""

    def __init__(
        self,
        detail: str,
        pool: dict[str, Any] | None = None,
        unavailable: Sequence[int] = (),
    ) -> None:
        super().__init__(detail, status_code=409)
        self.pool = pool
        self.unavailable = list(unavailable)


class TicketSelection:
    """Pending (not yet persisted) choice of ticket numbers.

    At most ``limit`` numbers can be selected; adding past the limit or
    picking a number that is not available is a silent no-op. Removing a
    selected number is always allowed.
    """

    def __init__(self, limit: int, pool: Iterable[dict[str, Any]] = ()) -> None:
        self.limit = max(0, int(limit))
        self._tickets: dict[int, dict[str, Any]] = {}
        self._selected: list[int] = []
        self.refresh(pool)

    def refresh(self, pool: Iterable[dict[str, Any]]) -> list[int]:
        """Replace the pool; returns selected numbers dropped because they were taken."""
        self._tickets = {int(t["ticket_number"]): t for t in pool}
        dropped = [n for n in self._selected if not self._is_available(n)]
        self._selected = [n for n in self._selected if n not in dropped]
        return dropped

    def _is_available(self, number: int) -> bool:
        ticket = self._tickets.get(number)
        return ticket is not None and ticket.get("status") == TICKET_AVAILABLE

    def status_of(self, number: int) -> str | None:
        """``available``, ``selected`` or ``sold``; ``None`` if not in the pool."""
        ticket = self._tickets.get(number)
        if ticket is None:
            return None
        if number in self._selected:
            return TICKET_SELECTED
        return TICKET_AVAILABLE if ticket.get("status") == TICKET_AVAILABLE else TICKET_SOLD

    def toggle(self, number: int) -> bool:
        """Select or unselect *number*. Returns True when the selection changed."""
        if number in self._selected:
            self._selected.remove(number)
            return True
        if len(self._selected) >= self.limit or not self._is_available(number):
            return False
        self._selected.append(number)
        return True

    def remove(self, number: int) -> bool:
        if number in self._selected:
            self._selected.remove(number)
            return True
        return False

    def clear(self) -> None:
        self._selected.clear()

    @property
    def selected_numbers(self) -> list[int]:
        return sorted(self._selected)

    @property
    def selected_ticket_ids(self) -> list[str]:
        return [str(self._tickets[n]["ticket_id"]) for n in self.selected_numbers]

    @property
    def remaining(self) -> int:
        return self.limit - len(self._selected)

    @property
    def can_confirm(self) -> bool:
        return self.limit > 0 and len(self._selected) == self.limit

    def view(self) -> list[dict[str, Any]]:
        return [
            {
                "ticket_id": str(t["ticket_id"]),
                "number": n,
                "status": self.status_of(n),
            }
            for n, t in sorted(self._tickets.items())
        ]


class ClaimService:
    """Validates and applies ticket-number claims for paid purchases."""

    def __init__(
        self,
        purchase_repo: Any,
        ticket_repo: Any,
        prize_repo: Any,
        email_service: Any | None = None,
    ) -> None:
        self.purchase_repo = purchase_repo
        self.ticket_repo = ticket_repo
        self.prize_repo = prize_repo
        self.email_service = email_service

    def _get_purchase(self, purchase_id: str) -> dict[str, Any]:
        purchase = self.purchase_repo.find_by_id(purchase_id)
        if purchase is None:
            raise ClaimError("Purchase not found", status_code=404)
        return purchase

    def _owned_numbers(self, purchase_id: str) -> list[int]:
        return sorted(int(t["ticket_number"]) for t in self.ticket_repo.find_by_purchase(purchase_id))

    def get_ticket_pool(self, purchase_id: str) -> dict[str, Any]:
        """The raffle's pool as seen by this purchase's buyer."""
        purchase = self._get_purchase(purchase_id)
        owned = self._owned_numbers(purchase_id)
        ticket_count = int(purchase.get("ticket_count") or 0)
        selection = TicketSelection(
            ticket_count - len(owned),
            self.ticket_repo.find_by_raffle(purchase["raffle_id"]),
        )
        return {
            "purchase_id": purchase_id,
            "raffle_id": purchase["raffle_id"],
            "status": purchase.get("status"),
            "ticket_count": ticket_count,
            "owned_numbers": owned,
            "remaining": selection.limit,
            "can_claim": purchase.get("status") == PURCHASE_PAID and selection.limit > 0,
            "tickets": selection.view(),
        }

    def confirm_selection(self, purchase_id: str, numbers: Sequence[int]) -> dict[str, Any]:
        """Claim *numbers* for a paid purchase and confirm it once complete.

        Re-submitting the numbers a confirmed purchase already holds is a
        no-op that returns the existing selection.
        """
        purchase = self._get_purchase(purchase_id)
        requested = [int(n) for n in numbers]
        if len(set(requested)) != len(requested):
            raise ClaimError("Ticket numbers must be distinct", status_code=422)

        status = purchase.get("status")
        ticket_count = int(purchase.get("ticket_count") or 0)
        owned = self._owned_numbers(purchase_id)

        if status == PURCHASE_CONFIRMED:
            if not requested or set(requested) == set(owned):
                return self._result(purchase_id, PURCHASE_CONFIRMED, owned, confirmed=False)
            raise ClaimError("Purchase is already confirmed with other numbers", status_code=409)

        if status != PURCHASE_PAID:
            raise ClaimError(
                f"Purchase must be paid before choosing numbers (status: {status})",
                status_code=409,
            )

        remaining = ticket_count - len(owned)
        if remaining <= 0:
            # Paid but already holding every ticket, e.g. assigned by an admin
            if set(requested) <= set(owned):
                return self._complete(purchase, owned)
            raise ClaimError("All tickets for this purchase are already assigned", status_code=409)

        pool = self.ticket_repo.find_by_raffle(purchase["raffle_id"])
        selection = TicketSelection(remaining, pool)

        unknown = [n for n in requested if selection.status_of(n) is None]
        if unknown:
            raise ClaimError(f"Unknown ticket numbers: {unknown}", status_code=422)
        if len(requested) != remaining:
            raise ClaimError(f"Select exactly {remaining} numbers", status_code=422)

        taken = [n for n in requested if not selection.toggle(n)]
        if taken:
            logger.info("Purchase %s requested taken numbers %s", purchase_id, taken)
            raise ClaimConflictError(
                "Some numbers are no longer available",
                pool=self.get_ticket_pool(purchase_id),
                unavailable=taken,
            )
        if not selection.can_confirm:
            raise ClaimError(f"Select exactly {remaining} numbers", status_code=422)

        if not self.ticket_repo.assign_tickets(purchase_id, selection.selected_ticket_ids):
            logger.info("Claim race lost for purchase %s (%s)", purchase_id, requested)
            raise ClaimConflictError(
                "Some numbers were just taken by another buyer",
                pool=self.get_ticket_pool(purchase_id),
            )

        logger.info(
            "Purchase %s claimed numbers %s",
            purchase_id,
            selection.selected_numbers,
        )
        return self._complete(purchase, self._owned_numbers(purchase_id))

    def _complete(self, purchase: dict[str, Any], owned: list[int]) -> dict[str, Any]:
        """Confirm the purchase iff it owns exactly ticket_count tickets."""
        purchase_id = purchase["purchase_id"]
        ticket_count = int(purchase.get("ticket_count") or 0)
        if len(owned) != ticket_count:
            return self._result(purchase_id, PURCHASE_PAID, owned, confirmed=False)

        transitioned = self.purchase_repo.transition_status(
            purchase_id, [PURCHASE_PAID], PURCHASE_CONFIRMED
        )
        if transitioned:
            self._send_confirmation(purchase, owned)
        return self._result(purchase_id, PURCHASE_CONFIRMED, owned, confirmed=transitioned)

    def _send_confirmation(self, purchase: dict[str, Any], numbers: list[int]) -> None:
        if self.email_service is None or not purchase.get("email"):
            return
        try:
            prizes = self.prize_repo.find_by_raffle(purchase["raffle_id"])
            self.email_service.send_confirmation(
                purchase["email"], purchase["purchase_id"], numbers, prizes
            )
        except Exception:
            logger.warning(
                "Confirmation email failed for purchase %s",
                purchase["purchase_id"],
                exc_info=True,
            )

    @staticmethod
    def _result(
        purchase_id: str,
        status: str,
        numbers: list[int],
        *,
        confirmed: bool,
    ) -> dict[str, Any]:
        return {
            "purchase_id": purchase_id,
            "status": status,
            "ticket_numbers": numbers,
            "confirmed": confirmed,
        }
